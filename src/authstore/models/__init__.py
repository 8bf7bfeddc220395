from authstore.models.config import AdapterConfig, AdapterDescriptor, ConnectionConfig
from authstore.models.enums import (
    ConnectionMode,
    Connector,
    DateStorage,
    FieldType,
    OperationKind,
    Operator,
    SortDirection,
)
from authstore.models.query import CompiledStatement, HealthStatus, SortBy, StatementResult, WhereClause
from authstore.models.schema import PRIMARY_KEY, FieldAttribute, ModelSchema

__all__ = [
    "AdapterConfig",
    "AdapterDescriptor",
    "ConnectionConfig",
    "ConnectionMode",
    "Connector",
    "DateStorage",
    "FieldType",
    "OperationKind",
    "Operator",
    "SortDirection",
    "CompiledStatement",
    "HealthStatus",
    "SortBy",
    "StatementResult",
    "WhereClause",
    "PRIMARY_KEY",
    "FieldAttribute",
    "ModelSchema",
]
