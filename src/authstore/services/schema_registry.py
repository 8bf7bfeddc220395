"""Schema registry deriving DDL from model descriptors.

Table definitions are built once, at construction, as SQLAlchemy Core
tables in a private MetaData; CREATE TABLE statements are compiled from
them with the SQLite dialect and executed through the connection manager.

First use of a model is single-flight: concurrent callers for the same
model share one in-flight creation task, and ``CREATE TABLE IF NOT EXISTS``
remains the backstop against races with other processes.
"""

import asyncio
from collections.abc import Iterable

import structlog
from sqlalchemy import Column, ForeignKey, Integer, MetaData, Numeric, Table, Text, text
from sqlalchemy.dialects import sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable
from sqlalchemy.types import TypeEngine

from authstore.errors import (
    ConfigurationError,
    ConnectionError,
    ExecutionError,
    QueryError,
    SchemaError,
    StorageError,
)
from authstore.models.enums import DateStorage, FieldType
from authstore.models.schema import PRIMARY_KEY, FieldAttribute, ModelSchema
from authstore.services.coercion import to_storage
from authstore.services.connection import ConnectionManager
from authstore.services.security import quote_identifier

_DIALECT = sqlite.dialect()
_DUPLICATE_COLUMN = "duplicate column name"


def _sql_literal(value: object) -> str:
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


class SchemaRegistry:
    """Tracks which model tables are known to exist on one connection.

    The known-table cache starts empty and only grows; a model is marked
    known only after its DDL succeeded, so a failed creation is retried by
    the next call.
    """

    def __init__(
        self,
        models: Iterable[ModelSchema],
        connection: ConnectionManager,
        use_plural: bool = False,
        numeric_ids: bool = False,
        date_storage: DateStorage = DateStorage.ISO,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._connection = connection
        self._use_plural = use_plural
        self._numeric_ids = numeric_ids
        self._date_storage = date_storage
        self._logger = logger or structlog.get_logger(__name__)
        self._models: dict[str, ModelSchema] = {}
        for model in models:
            if model.name in self._models:
                raise ConfigurationError(f"model '{model.name}' is declared twice")
            self._models[model.name] = model
        self._metadata = MetaData()
        self._tables = self._build_tables()
        self._known: set[str] = set()
        self._pending: dict[str, asyncio.Task[None]] = {}

    @property
    def models(self) -> dict[str, ModelSchema]:
        return dict(self._models)

    def get(self, name: str) -> ModelSchema:
        model = self._models.get(name)
        if model is None:
            raise QueryError(f"unknown model '{name}'")
        return model

    def table_name(self, name: str) -> str:
        return self.get(name).physical_table(self._use_plural)

    def is_known(self, name: str) -> bool:
        return name in self._known

    def create_table_sql(self, name: str) -> str:
        table = self._tables[self.get(name).name]
        return str(CreateTable(table, if_not_exists=True).compile(dialect=_DIALECT)).strip()

    def generate_schema(self) -> str:
        """Return the DDL script for every model in dependency order."""
        statements = []
        for table in self._metadata.sorted_tables:
            compiled = str(CreateTable(table, if_not_exists=True).compile(dialect=_DIALECT)).strip()
            statements.append(f"{compiled};")
        return "\n\n".join(statements) + "\n"

    async def ensure_table(self, model: ModelSchema) -> None:
        """Create the model's table, and those it references, on first use."""
        if model.name in self._known:
            return
        for dependency in self._creation_order(model):
            await self._single_flight(dependency)

    async def _single_flight(self, model: ModelSchema) -> None:
        if model.name in self._known:
            return
        task = self._pending.get(model.name)
        if task is None:
            task = asyncio.ensure_future(self._create_table(model))
            self._pending[model.name] = task
            task.add_done_callback(lambda done, name=model.name: self._clear_pending(name, done))
        await asyncio.shield(task)

    async def ensure_all(self) -> None:
        await asyncio.gather(*(self.ensure_table(model) for model in self._models.values()))

    def _clear_pending(self, name: str, task: asyncio.Task[None]) -> None:
        if self._pending.get(name) is task:
            del self._pending[name]
        if not task.cancelled():
            task.exception()

    def _creation_order(self, model: ModelSchema) -> list[ModelSchema]:
        """The model preceded by every model it transitively references."""
        ordered: list[ModelSchema] = []
        visited: set[str] = set()

        def visit(current: ModelSchema) -> None:
            visited.add(current.name)
            for reference in current.referenced_models():
                if reference not in visited:
                    visit(self._models[reference])
            ordered.append(current)

        visit(model)
        return ordered

    async def _create_table(self, model: ModelSchema) -> None:
        table = model.physical_table(self._use_plural)
        try:
            await self._connection.execute(self.create_table_sql(model.name))
            await self._add_missing_columns(model, table)
        except ConnectionError:
            raise
        except StorageError as exc:
            self._logger.error("table_creation_failed", model=model.name, table=table, error=str(exc))
            message = exc.driver_message or str(exc)
            raise SchemaError(f"failed to create table '{table}'", driver_message=message) from exc
        self._known.add(model.name)
        self._logger.info("table_ensured", model=model.name, table=table)

    async def _add_missing_columns(self, model: ModelSchema, table: str) -> None:
        result = await self._connection.execute(f"PRAGMA table_info({quote_identifier(table)})")
        existing = {row["name"] for row in result.rows}
        for field, attribute in model.fields.items():
            column = model.column_for(field)
            if column in existing:
                continue
            try:
                await self._connection.execute(self._add_column_sql(table, column, attribute))
            except ExecutionError as exc:
                # another process added it between the PRAGMA and the ALTER
                if _DUPLICATE_COLUMN not in (exc.driver_message or "").lower():
                    raise
                self._logger.info("column_already_present", model=model.name, table=table, column=column)
                continue
            self._logger.info("column_added", model=model.name, table=table, column=column)

    def _add_column_sql(self, table: str, column: str, attribute: FieldAttribute) -> str:
        # SQLite cannot add NOT NULL or UNIQUE columns to a populated table.
        sql = f"ALTER TABLE {quote_identifier(table)} ADD COLUMN {quote_identifier(column)}"
        sql += f" {self._column_type(attribute.type).compile(dialect=_DIALECT)}"
        if attribute.has_literal_default:
            sql += f" DEFAULT {_sql_literal(self._default_storage(attribute))}"
        if attribute.references is not None:
            target = self._models[attribute.references].physical_table(self._use_plural)
            sql += f" REFERENCES {quote_identifier(target)} ({quote_identifier(PRIMARY_KEY)}) ON DELETE CASCADE"
        return sql

    def _build_tables(self) -> dict[str, Table]:
        tables: dict[str, Table] = {}
        for model in self._models.values():
            for reference in model.referenced_models():
                if reference not in self._models:
                    raise ConfigurationError(f"model '{model.name}' references unknown model '{reference}'")
        try:
            for model in self._models.values():
                tables[model.name] = self._build_table(model)
        except SQLAlchemyError as exc:
            raise ConfigurationError("invalid model descriptors", driver_message=str(exc)) from exc
        return tables

    def _build_table(self, model: ModelSchema) -> Table:
        if self._numeric_ids:
            primary_key = Column(PRIMARY_KEY, Integer, primary_key=True, autoincrement=True)
        else:
            primary_key = Column(PRIMARY_KEY, Text, primary_key=True)
        columns = [primary_key]
        for field, attribute in model.fields.items():
            columns.append(self._build_column(model.column_for(field), attribute))
        return Table(
            model.physical_table(self._use_plural),
            self._metadata,
            *columns,
            sqlite_autoincrement=self._numeric_ids,
        )

    def _build_column(self, name: str, attribute: FieldAttribute) -> Column:
        args: list[object] = [name, self._column_type(attribute.type)]
        if attribute.references is not None:
            target = self._models[attribute.references].physical_table(self._use_plural)
            args.append(ForeignKey(f"{target}.{PRIMARY_KEY}", ondelete="CASCADE"))
        server_default = None
        if attribute.has_literal_default:
            server_default = text(_sql_literal(self._default_storage(attribute)))
        return Column(
            *args,
            nullable=not attribute.required,
            unique=attribute.unique,
            server_default=server_default,
        )

    def _column_type(self, field_type: FieldType) -> TypeEngine:
        match field_type:
            case FieldType.NUMBER:
                return Numeric()
            case FieldType.BOOLEAN:
                return Integer()
            case FieldType.DATE:
                return Integer() if self._date_storage == DateStorage.EPOCH else Text()
            case FieldType.REFERENCE | FieldType.ID:
                return Integer() if self._numeric_ids else Text()
            case _:
                return Text()

    def _default_storage(self, attribute: FieldAttribute) -> object:
        return to_storage(
            attribute.default_value,
            attribute.type,
            date_storage=self._date_storage,
            numeric_ids=self._numeric_ids,
        )
