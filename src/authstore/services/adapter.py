"""Adapter facade exposing the CRUD contract to the host framework.

Each operation runs the same fixed pipeline: compile (pure, so invalid
requests fail before any I/O), ensure the table exists, bind coerced
arguments, execute, coerce the rows back, and optionally log the call.
Calls share no state beyond the connection and the known-table cache.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any
from uuid import uuid4

import structlog
from pydantic import ValidationError

from authstore.errors import ConfigurationError, ExecutionError
from authstore.models.config import AdapterConfig, AdapterDescriptor
from authstore.models.enums import OperationKind
from authstore.models.query import WhereClause
from authstore.models.schema import PRIMARY_KEY, ModelSchema
from authstore.services.coercion import from_storage
from authstore.services.compiler import QueryCompiler, SortInput, WhereInput, normalize_where
from authstore.services.connection import ConnectionManager
from authstore.services.debug_logger import DebugLogger
from authstore.services.schema_registry import SchemaRegistry

Record = dict[str, Any]
ModelsInput = Iterable[ModelSchema | Mapping[str, Any]] | Mapping[str, ModelSchema | Mapping[str, Any]]

SCHEMA_FILE_PATH = "schema.sql"


def normalize_models(models: ModelsInput) -> list[ModelSchema]:
    """Accept ModelSchema objects, or a mapping of model name to descriptor."""
    try:
        if isinstance(models, Mapping):
            return [
                model if isinstance(model, ModelSchema) else ModelSchema.model_validate({"name": name, **model})
                for name, model in models.items()
            ]
        return [model if isinstance(model, ModelSchema) else ModelSchema.model_validate(model) for model in models]
    except ValidationError as exc:
        raise ConfigurationError("invalid model descriptors", driver_message=str(exc)) from exc


class Adapter:
    """libSQL storage adapter for an authentication framework.

    Construction validates options and model descriptors but performs no I/O;
    the connection opens on the first call.
    """

    def __init__(
        self,
        models: ModelsInput,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
        **options: Any,
    ) -> None:
        self._config = AdapterConfig.from_options(**options)
        self._logger = logger or structlog.get_logger(__name__)
        self._debug = DebugLogger(self._config.debug_logs, logger=self._logger)
        self._connection = ConnectionManager(
            config=self._config.config,
            client=self._config.client,
            foreign_keys=self._config.foreign_keys,
            debug_logger=self._debug,
            logger=self._logger,
        )
        self._registry = SchemaRegistry(
            normalize_models(models),
            self._connection,
            use_plural=self._config.use_plural,
            numeric_ids=self._config.use_numeric_ids,
            date_storage=self._config.date_storage,
            logger=self._logger,
        )
        self._compiler = QueryCompiler(
            use_plural=self._config.use_plural,
            date_storage=self._config.date_storage,
            numeric_ids=self._config.use_numeric_ids,
        )

    @property
    def descriptor(self) -> AdapterDescriptor:
        return AdapterDescriptor(use_plural=self._config.use_plural)

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    async def __aenter__(self) -> "Adapter":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._connection.close()

    async def create(self, model: str, data: Mapping[str, Any], select: Sequence[str] | None = None) -> Record:
        """Insert a record and return it as stored, including its id."""
        schema = self._registry.get(model)

        async def run() -> Record:
            record = self._prepare_create(schema, data)
            statement = self._compiler.compile_insert(schema, record)
            await self._registry.ensure_table(schema)
            result = await self._connection.execute(statement.sql, statement.args)
            key = record.get(PRIMARY_KEY, result.last_insert_rowid)
            if key is None:
                raise ExecutionError(f"insert into '{model}' returned no id")
            created = await self._fetch_by_id(schema, key, select)
            if created is None:
                raise ExecutionError(f"created '{model}' record could not be read back")
            return created

        return await self._debug.wrap(
            OperationKind.CREATE, run, **self._log_context(OperationKind.CREATE, model, data=data)
        )

    async def find_one(
        self,
        model: str,
        where: WhereInput = None,
        select: Sequence[str] | None = None,
        sort_by: SortInput = None,
    ) -> Record | None:
        schema = self._registry.get(model)

        async def run() -> Record | None:
            statement = self._compiler.compile_select(schema, where, sort_by=sort_by, limit=1, select=select)
            await self._registry.ensure_table(schema)
            result = await self._connection.execute(statement.sql, statement.args)
            if not result.rows:
                return None
            return self._decode(schema, result.rows[0])

        return await self._debug.wrap(
            OperationKind.FIND_ONE, run, **self._log_context(OperationKind.FIND_ONE, model, where)
        )

    async def find_many(
        self,
        model: str,
        where: WhereInput = None,
        limit: int | None = None,
        offset: int | None = None,
        sort_by: SortInput = None,
        select: Sequence[str] | None = None,
    ) -> list[Record]:
        schema = self._registry.get(model)

        async def run() -> list[Record]:
            statement = self._compiler.compile_select(
                schema, where, sort_by=sort_by, limit=limit, offset=offset, select=select
            )
            await self._registry.ensure_table(schema)
            result = await self._connection.execute(statement.sql, statement.args)
            return [self._decode(schema, row) for row in result.rows]

        return await self._debug.wrap(
            OperationKind.FIND_MANY,
            run,
            **self._log_context(OperationKind.FIND_MANY, model, where, limit=limit, offset=offset),
        )

    async def update(
        self,
        model: str,
        where: WhereInput,
        update: Mapping[str, Any],
        select: Sequence[str] | None = None,
    ) -> Record | None:
        """Update the first matching row (rowid order) and return it."""
        schema = self._registry.get(model)

        async def run() -> Record | None:
            self._validate_update(schema, where, update)
            lookup = self._compiler.compile_first_match(schema, where)
            await self._registry.ensure_table(schema)
            key = await self._first_match_id(lookup.sql, lookup.args)
            if key is None:
                return None
            statement = self._compiler.compile_update(schema, self._by_id(key), update)
            result = await self._connection.execute(statement.sql, statement.args)
            if result.rows_affected == 0:
                return None
            return await self._fetch_by_id(schema, update.get(PRIMARY_KEY, key), select)

        return await self._debug.wrap(
            OperationKind.UPDATE, run, **self._log_context(OperationKind.UPDATE, model, where, update=update)
        )

    async def update_many(self, model: str, where: WhereInput, update: Mapping[str, Any]) -> int:
        schema = self._registry.get(model)

        async def run() -> int:
            statement = self._compiler.compile_update(schema, where, update)
            await self._registry.ensure_table(schema)
            result = await self._connection.execute(statement.sql, statement.args)
            return result.rows_affected

        return await self._debug.wrap(
            OperationKind.UPDATE_MANY, run, **self._log_context(OperationKind.UPDATE_MANY, model, where, update=update)
        )

    async def delete(self, model: str, where: WhereInput) -> None:
        """Delete the first matching row (rowid order), if any."""
        schema = self._registry.get(model)

        async def run() -> None:
            lookup = self._compiler.compile_first_match(schema, where)
            await self._registry.ensure_table(schema)
            key = await self._first_match_id(lookup.sql, lookup.args)
            if key is None:
                return None
            statement = self._compiler.compile_delete(schema, self._by_id(key))
            await self._connection.execute(statement.sql, statement.args)
            return None

        await self._debug.wrap(OperationKind.DELETE, run, **self._log_context(OperationKind.DELETE, model, where))

    async def delete_many(self, model: str, where: WhereInput) -> int:
        schema = self._registry.get(model)

        async def run() -> int:
            statement = self._compiler.compile_delete(schema, where)
            await self._registry.ensure_table(schema)
            result = await self._connection.execute(statement.sql, statement.args)
            return result.rows_affected

        return await self._debug.wrap(
            OperationKind.DELETE_MANY, run, **self._log_context(OperationKind.DELETE_MANY, model, where)
        )

    async def count(
        self,
        model: str,
        where: WhereInput = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> int:
        schema = self._registry.get(model)

        async def run() -> int:
            statement = self._compiler.compile_count(schema, where, limit=limit, offset=offset)
            await self._registry.ensure_table(schema)
            result = await self._connection.execute(statement.sql, statement.args)
            return int(result.rows[0]["count"]) if result.rows else 0

        return await self._debug.wrap(
            OperationKind.COUNT, run, **self._log_context(OperationKind.COUNT, model, where)
        )

    async def ensure_schema(self) -> None:
        """Create every model's table now instead of on first use."""
        await self._registry.ensure_all()

    def create_schema(self) -> tuple[str, str]:
        """Return the DDL script for all models and its suggested file name."""
        return self._registry.generate_schema(), SCHEMA_FILE_PATH

    def _log_context(
        self,
        kind: OperationKind,
        model: str,
        where: WhereInput = None,
        **extra: Any,
    ) -> dict[str, Any]:
        if not self._debug.enabled(kind):
            return {}
        context: dict[str, Any] = {"model": model, **{key: value for key, value in extra.items() if value is not None}}
        if where:
            context["where"] = [
                {clause.field: clause.value, "operator": clause.operator.value, "connector": clause.connector.value}
                for clause in normalize_where(where)
            ]
        for key in ("data", "update"):
            if key in context:
                context[key] = dict(context[key])
        return context

    def _validate_update(self, schema: ModelSchema, where: WhereInput, update: Mapping[str, Any]) -> None:
        """Reject unknown fields, bad filters and empty updates before any I/O."""
        self._compiler.compile_update(schema, where, update)

    def _prepare_create(self, schema: ModelSchema, data: Mapping[str, Any]) -> Record:
        record = dict(data)
        if record.get(PRIMARY_KEY) is None:
            record.pop(PRIMARY_KEY, None)
            if not self._config.use_numeric_ids:
                record[PRIMARY_KEY] = str(uuid4())
        for field, attribute in schema.fields.items():
            if field not in record and attribute.has_callable_default:
                record[field] = attribute.default_value()
        return record

    async def _first_match_id(self, sql: str, args: tuple[Any, ...]) -> Any:
        result = await self._connection.execute(sql, args)
        if not result.rows:
            return None
        return result.rows[0][PRIMARY_KEY]

    async def _fetch_by_id(self, schema: ModelSchema, key: Any, select: Sequence[str] | None) -> Record | None:
        statement = self._compiler.compile_select(schema, self._by_id(key), limit=1, select=select)
        result = await self._connection.execute(statement.sql, statement.args)
        if not result.rows:
            return None
        return self._decode(schema, result.rows[0])

    def _by_id(self, key: Any) -> list[WhereClause]:
        return [WhereClause(field=PRIMARY_KEY, value=key)]

    def _decode(self, schema: ModelSchema, row: Mapping[str, Any]) -> Record:
        numeric_ids = self._config.use_numeric_ids
        return {
            field: from_storage(value, schema.field_type(field), numeric_ids=numeric_ids)
            for field, value in row.items()
            if schema.has_field(field)
        }
