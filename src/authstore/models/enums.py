from enum import StrEnum


class FieldType(StrEnum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"
    ID = "id"
    REFERENCE = "reference"


class Operator(StrEnum):
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


class Connector(StrEnum):
    AND = "AND"
    OR = "OR"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


class ConnectionMode(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"
    REPLICA = "replica"


class DateStorage(StrEnum):
    ISO = "iso"
    EPOCH = "epoch"


class OperationKind(StrEnum):
    CREATE = "create"
    FIND_ONE = "find_one"
    FIND_MANY = "find_many"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    DELETE = "delete"
    DELETE_MANY = "delete_many"
    COUNT = "count"
    EXECUTE = "execute"
