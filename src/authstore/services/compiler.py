"""Query compiler turning structured requests into parameterized SQL.

Filters are flat predicate chains: each predicate after the first is joined
to the running clause with its own connector, left to right, with no
grouping. Values are always bound as ``?`` arguments after passing through
the coercion layer; only validated, quoted identifiers reach the SQL text.
"""

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from authstore.errors import QueryError
from authstore.models.enums import DateStorage, FieldType, Operator
from authstore.models.query import CompiledStatement, SortBy, WhereClause
from authstore.models.schema import PRIMARY_KEY, ModelSchema
from authstore.services.coercion import to_storage
from authstore.services.security import quote_identifier

_COMPARISONS = {
    Operator.EQ: "=",
    Operator.NE: "!=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.GT: ">",
    Operator.GTE: ">=",
}

_PATTERNS = {
    Operator.CONTAINS: "%{}%",
    Operator.STARTS_WITH: "{}%",
    Operator.ENDS_WITH: "%{}",
}

_LIKE_ESCAPE = "\\"

WhereInput = Sequence[WhereClause | Mapping[str, Any]] | None
SortInput = Sequence[SortBy | Mapping[str, Any]] | SortBy | Mapping[str, Any] | None


def normalize_where(where: WhereInput) -> list[WhereClause]:
    """Validate raw predicate mappings into WhereClause objects."""
    if not where:
        return []
    try:
        return [clause if isinstance(clause, WhereClause) else WhereClause.model_validate(clause) for clause in where]
    except ValidationError as exc:
        raise QueryError("invalid filter", driver_message=_describe(exc)) from exc


def normalize_sort(sort_by: SortInput) -> list[SortBy]:
    if not sort_by:
        return []
    if isinstance(sort_by, (SortBy, Mapping)):
        sort_by = [sort_by]
    try:
        return [item if isinstance(item, SortBy) else SortBy.model_validate(item) for item in sort_by]
    except ValidationError as exc:
        raise QueryError("invalid sort specification", driver_message=_describe(exc)) from exc


def _describe(exc: ValidationError) -> str:
    return "; ".join(error.get("msg", "") for error in exc.errors())


def _escape_like(text: str) -> str:
    for special in (_LIKE_ESCAPE, "%", "_"):
        text = text.replace(special, _LIKE_ESCAPE + special)
    return text


class QueryCompiler:
    """Compiles select/insert/update/delete/count statements for one adapter.

    Holds only immutable naming and coercion settings, so a single instance
    is shared by every concurrent call.
    """

    def __init__(
        self,
        use_plural: bool = False,
        date_storage: DateStorage = DateStorage.ISO,
        numeric_ids: bool = False,
    ) -> None:
        self._use_plural = use_plural
        self._date_storage = date_storage
        self._numeric_ids = numeric_ids

    def table_for(self, model: ModelSchema) -> str:
        return quote_identifier(model.physical_table(self._use_plural))

    def compile_select(
        self,
        model: ModelSchema,
        where: WhereInput = None,
        sort_by: SortInput = None,
        limit: int | None = None,
        offset: int | None = None,
        select: Sequence[str] | None = None,
    ) -> CompiledStatement:
        columns = ", ".join(self._projection(model, select))
        sql = f"SELECT {columns} FROM {self.table_for(model)}"
        where_sql, args = self._compile_where(model, normalize_where(where))
        sql += where_sql
        sql += self._compile_order(model, normalize_sort(sort_by))
        window_sql, window_args = self._compile_window(limit, offset)
        return CompiledStatement(sql=sql + window_sql, args=tuple(args + window_args))

    def compile_first_match(self, model: ModelSchema, where: WhereInput) -> CompiledStatement:
        """Select the primary key of the first matching row in rowid order."""
        where_sql, args = self._compile_where(model, normalize_where(where))
        sql = f"SELECT {quote_identifier(PRIMARY_KEY)} FROM {self.table_for(model)}{where_sql} ORDER BY rowid LIMIT 1"
        return CompiledStatement(sql=sql, args=tuple(args))

    def compile_insert(self, model: ModelSchema, data: Mapping[str, Any]) -> CompiledStatement:
        table = self.table_for(model)
        if not data:
            return CompiledStatement(sql=f"INSERT INTO {table} DEFAULT VALUES")
        columns: list[str] = []
        args: list[Any] = []
        for field, value in data.items():
            self._require_field(model, field)
            columns.append(quote_identifier(model.column_for(field)))
            args.append(self._bind(model, field, value))
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        return CompiledStatement(sql=sql, args=tuple(args))

    def compile_update(self, model: ModelSchema, where: WhereInput, data: Mapping[str, Any]) -> CompiledStatement:
        if not data:
            raise QueryError(f"update on '{model.name}' has no fields to set")
        assignments: list[str] = []
        args: list[Any] = []
        for field, value in data.items():
            self._require_field(model, field)
            assignments.append(f"{quote_identifier(model.column_for(field))} = ?")
            args.append(self._bind(model, field, value))
        where_sql, where_args = self._compile_where(model, normalize_where(where))
        sql = f"UPDATE {self.table_for(model)} SET {', '.join(assignments)}{where_sql}"
        return CompiledStatement(sql=sql, args=tuple(args + where_args))

    def compile_delete(self, model: ModelSchema, where: WhereInput) -> CompiledStatement:
        where_sql, args = self._compile_where(model, normalize_where(where))
        return CompiledStatement(sql=f"DELETE FROM {self.table_for(model)}{where_sql}", args=tuple(args))

    def compile_count(
        self,
        model: ModelSchema,
        where: WhereInput = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> CompiledStatement:
        where_sql, args = self._compile_where(model, normalize_where(where))
        window_sql, window_args = self._compile_window(limit, offset)
        table = self.table_for(model)
        if window_sql:
            sql = f'SELECT COUNT(*) AS "count" FROM (SELECT 1 FROM {table}{where_sql}{window_sql})'
        else:
            sql = f'SELECT COUNT(*) AS "count" FROM {table}{where_sql}'
        return CompiledStatement(sql=sql, args=tuple(args + window_args))

    def _projection(self, model: ModelSchema, select: Sequence[str] | None) -> list[str]:
        fields = [PRIMARY_KEY, *model.fields]
        if select:
            for field in select:
                self._require_field(model, field)
            wanted = set(select)
            fields = [field for field in fields if field == PRIMARY_KEY or field in wanted]
        return [self._select_column(model, field) for field in fields]

    def _select_column(self, model: ModelSchema, field: str) -> str:
        column = model.column_for(field)
        if column == field:
            return quote_identifier(column)
        return f"{quote_identifier(column)} AS {quote_identifier(field)}"

    def _compile_where(self, model: ModelSchema, clauses: list[WhereClause]) -> tuple[str, list[Any]]:
        if not clauses:
            return "", []
        sql_parts: list[str] = []
        args: list[Any] = []
        for index, clause in enumerate(clauses):
            fragment, fragment_args = self._compile_predicate(model, clause)
            if index > 0:
                sql_parts.append(clause.connector.value)
            sql_parts.append(fragment)
            args.extend(fragment_args)
        return " WHERE " + " ".join(sql_parts), args

    def _compile_predicate(self, model: ModelSchema, clause: WhereClause) -> tuple[str, list[Any]]:
        self._require_field(model, clause.field)
        column = quote_identifier(model.column_for(clause.field))
        operator = clause.operator

        if operator == Operator.IN:
            values = [self._bind(model, clause.field, item) for item in clause.value]
            placeholders = ", ".join("?" for _ in values)
            return f"{column} IN ({placeholders})", values

        if operator in _PATTERNS:
            text = self._pattern_text(model, clause)
            pattern = _PATTERNS[operator].format(_escape_like(text))
            return f"{column} LIKE ? ESCAPE '{_LIKE_ESCAPE}'", [pattern]

        if clause.value is None and operator == Operator.EQ:
            return f"{column} IS NULL", []
        if clause.value is None and operator == Operator.NE:
            return f"{column} IS NOT NULL", []

        sql_operator = _COMPARISONS.get(operator)
        if sql_operator is None:
            raise QueryError(f"unsupported operator '{operator}'")
        return f"{column} {sql_operator} ?", [self._bind(model, clause.field, clause.value)]

    def _pattern_text(self, model: ModelSchema, clause: WhereClause) -> str:
        field_type = model.field_type(clause.field)
        if field_type in (FieldType.STRING, FieldType.JSON):
            return clause.value
        return str(self._bind(model, clause.field, clause.value))

    def _compile_order(self, model: ModelSchema, sort_by: list[SortBy]) -> str:
        if not sort_by:
            return ""
        terms = []
        for sort in sort_by:
            self._require_field(model, sort.field)
            terms.append(f"{quote_identifier(model.column_for(sort.field))} {sort.direction.value.upper()}")
        return " ORDER BY " + ", ".join(terms)

    def _compile_window(self, limit: int | None, offset: int | None) -> tuple[str, list[Any]]:
        for name, value in (("limit", limit), ("offset", offset)):
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise QueryError(f"{name} must be a non-negative integer")
        if limit is None and not offset:
            return "", []
        if offset:
            return " LIMIT ? OFFSET ?", [-1 if limit is None else limit, offset]
        return " LIMIT ?", [limit]

    def _require_field(self, model: ModelSchema, field: str) -> None:
        if not model.has_field(field):
            raise QueryError(f"unknown field '{field}' on model '{model.name}'")

    def _bind(self, model: ModelSchema, field: str, value: Any) -> Any:
        return to_storage(
            value,
            model.field_type(field),
            date_storage=self._date_storage,
            numeric_ids=self._numeric_ids,
        )
