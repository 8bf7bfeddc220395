"""Connection manager owning the database client for one adapter.

Local mode runs on SQLAlchemy's native async engine with aiosqlite. Remote
and embedded-replica modes use the libsql driver, whose Python client is
synchronous, so every call is pushed through asyncio.to_thread() to keep the
async interface consistent. Statement execution is serialized per client:
SQLite allows a single writer and a DB-API connection must not be shared
between threads concurrently.
"""

import asyncio
import contextlib
from collections.abc import Callable, Sequence
from typing import Any, Protocol, TypeVar

import structlog
from sqlalchemy import event
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from authstore.errors import ConfigurationError, ConnectionError, ExecutionError, StorageError
from authstore.models.config import MEMORY_URL, ConnectionConfig
from authstore.models.enums import ConnectionMode, OperationKind
from authstore.models.query import HealthStatus, StatementResult
from authstore.services.debug_logger import DebugLogger

T = TypeVar("T")

_TRANSPORT_PREFIXES = (
    "hrana",
    "error sending request",
    "failed to connect",
    "connection refused",
    "connection reset",
    "timed out",
    "stream error",
)


def _is_transport_failure(exc: BaseException) -> bool:
    if isinstance(exc, (OSError, TimeoutError)):
        return True
    # prefixes only; quoted identifiers appear later in driver messages
    return str(exc).strip().lower().startswith(_TRANSPORT_PREFIXES)


def _statement_failed(sql: str, message: str) -> ExecutionError:
    return ExecutionError(f"statement failed: {sql.split(None, 1)[0].upper()}", driver_message=message)


def _translate(exc: BaseException, sql: str) -> StorageError:
    message = str(exc)
    if _is_transport_failure(exc):
        return ConnectionError("database transport failed", driver_message=message)
    return _statement_failed(sql, message)


class DatabaseClient(Protocol):
    async def execute(self, sql: str, args: Sequence[Any]) -> StatementResult: ...

    async def sync(self) -> None: ...

    async def close(self) -> None: ...


def create_async_engine_from_url(db_path: str, foreign_keys: bool = True) -> AsyncEngine:
    """Create an async SQLAlchemy engine for a local SQLite database.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.
        foreign_keys: Enable foreign key enforcement on every new connection.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == MEMORY_URL:
        # aiosqlite in-memory engines use a single shared connection, so
        # every session sees the same database
        url = "sqlite+aiosqlite:///:memory:"
    else:
        url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(url)
    if foreign_keys:
        enable_foreign_keys(engine)
    return engine


def enable_foreign_keys(engine: AsyncEngine) -> None:
    if event.contains(engine.sync_engine, "connect", _set_foreign_keys_pragma):
        return
    event.listen(engine.sync_engine, "connect", _set_foreign_keys_pragma)


def _set_foreign_keys_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


class EngineClient:
    """Local client on an SQLAlchemy AsyncEngine."""

    def __init__(self, engine: AsyncEngine, owns_engine: bool = True) -> None:
        self._engine = engine
        self._owns_engine = owns_engine
        self._lock = asyncio.Lock()

    async def execute(self, sql: str, args: Sequence[Any]) -> StatementResult:
        async with self._lock:
            try:
                async with self._engine.begin() as conn:
                    result = await conn.exec_driver_sql(sql, tuple(args))
                    if result.returns_rows:
                        return StatementResult(rows=[dict(row._mapping) for row in result.fetchall()])
                    return StatementResult(
                        rows_affected=max(result.rowcount, 0),
                        last_insert_rowid=result.lastrowid,
                    )
            except DBAPIError as exc:
                orig = exc.orig if exc.orig is not None else exc
                if isinstance(orig, OSError) or exc.connection_invalidated:
                    raise ConnectionError("database transport failed", driver_message=str(orig)) from exc
                raise _statement_failed(sql, str(orig)) from exc

    async def sync(self) -> None:
        return None

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()


class LibsqlClient:
    """Client on a libsql DB-API connection (remote or embedded replica).

    The lock is held until the worker thread returns, even when the awaiting
    task is cancelled, so close() never races a statement or sync in flight.
    """

    def __init__(self, connection: Any, owns_connection: bool = True) -> None:
        self._connection = connection
        self._owns_connection = owns_connection
        self._lock = asyncio.Lock()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        async with self._lock:
            future = asyncio.ensure_future(asyncio.to_thread(fn, *args))
            try:
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                await asyncio.wait({future})
                if not future.cancelled():
                    future.exception()
                raise

    async def execute(self, sql: str, args: Sequence[Any]) -> StatementResult:
        return await self._run(self._execute, sql, tuple(args))

    def _execute(self, sql: str, args: tuple[Any, ...]) -> StatementResult:
        try:
            cursor = self._connection.execute(sql, args)
            if cursor.description:
                columns = [description[0] for description in cursor.description]
                return StatementResult(rows=[dict(zip(columns, row)) for row in cursor.fetchall()])
            self._connection.commit()
            return StatementResult(
                rows_affected=max(cursor.rowcount or 0, 0),
                last_insert_rowid=cursor.lastrowid,
            )
        except Exception as exc:  # libsql exposes no common driver exception base
            raise _translate(exc, sql) from exc

    async def sync(self) -> None:
        try:
            await self._run(self._connection.sync)
        except Exception as exc:  # libsql exposes no common driver exception base
            raise ConnectionError("replica sync failed", driver_message=str(exc)) from exc

    async def close(self) -> None:
        if self._owns_connection:
            await self._run(self._connection.close)


def open_libsql_connection(config: ConnectionConfig) -> Any:
    """Open a libsql connection for remote or embedded-replica mode."""
    import libsql

    if config.mode == ConnectionMode.REMOTE:
        return libsql.connect(config.url, auth_token=config.auth_token or "", check_same_thread=False)
    return libsql.connect(
        config.local_path,
        sync_url=config.sync_url,
        auth_token=config.auth_token or "",
        check_same_thread=False,
    )


class ConnectionManager:
    """Owns the database client and exposes a single execute primitive.

    The client is opened lazily on first use. In replica mode a background
    task runs the initial sync, then syncs with the remote every
    ``sync_interval`` seconds until close(); opening does not wait on it.
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        client: Any = None,
        foreign_keys: bool = True,
        debug_logger: DebugLogger | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if (config is None) == (client is None):
            raise ConfigurationError("exactly one of config or client must be supplied")
        self._config = config
        self._foreign_keys = foreign_keys
        self._logger = logger or structlog.get_logger(__name__)
        self._debug = debug_logger or DebugLogger(logger=self._logger)
        self._client: DatabaseClient | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._open_lock = asyncio.Lock()
        self._closed = False
        self._prebuilt = self._wrap_prebuilt(client) if client is not None else None

    @property
    def mode(self) -> ConnectionMode:
        if self._config is None:
            return ConnectionMode.LOCAL
        return self._config.mode

    @property
    def is_open(self) -> bool:
        return self._client is not None

    def _wrap_prebuilt(self, client: Any) -> DatabaseClient:
        if isinstance(client, AsyncEngine):
            if self._foreign_keys:
                enable_foreign_keys(client)
            return EngineClient(client, owns_engine=False)
        if callable(getattr(client, "execute", None)) and callable(getattr(client, "commit", None)):
            return LibsqlClient(client, owns_connection=False)
        raise ConfigurationError(f"unsupported client type: {type(client).__name__}")

    async def open(self) -> None:
        async with self._open_lock:
            if self._client is not None:
                return
            if self._closed:
                raise ConnectionError("connection manager is closed")
            if self._prebuilt is not None:
                self._client = self._prebuilt
            else:
                self._client = await self._open_configured()
            if self._foreign_keys:
                await self._client.execute("PRAGMA foreign_keys = ON", ())
            self._logger.info("connection_opened", mode=self.mode.value)
            if self.mode == ConnectionMode.REPLICA:
                interval = self._config.sync_interval if self._config else None
                self._sync_task = asyncio.create_task(self._replicate(interval))

    async def _open_configured(self) -> DatabaseClient:
        assert self._config is not None
        if self.mode == ConnectionMode.LOCAL:
            return EngineClient(create_async_engine_from_url(self._config.local_path, self._foreign_keys))
        try:
            connection = await asyncio.to_thread(open_libsql_connection, self._config)
        except Exception as exc:  # libsql exposes no common driver exception base
            raise ConnectionError(f"failed to open {self.mode.value} connection", driver_message=str(exc)) from exc
        return LibsqlClient(connection)

    async def _replicate(self, interval: float | None) -> None:
        """Initial sync, then one sync every ``interval`` seconds until close()."""
        await self._background_sync(initial=True)
        while interval and self._client is not None:
            await asyncio.sleep(interval)
            await self._background_sync(initial=False)

    async def _background_sync(self, initial: bool) -> None:
        client = self._client
        if client is None:
            return
        try:
            await client.sync()
        except StorageError as exc:
            self._logger.warning("replica_sync_failed", initial=initial, error=str(exc))
        else:
            self._logger.debug("replica_sync_completed", initial=initial)

    async def execute(self, sql: str, args: Sequence[Any] = ()) -> StatementResult:
        """Execute one statement, returning rows or the affected-row count."""
        if self._client is None:
            await self.open()
        assert self._client is not None
        client = self._client
        return await self._debug.wrap(
            OperationKind.EXECUTE,
            lambda: client.execute(sql, args),
            sql=sql,
            arg_count=len(args),
        )

    async def sync(self) -> None:
        """Trigger a replica sync now. A no-op outside replica mode."""
        if self.mode != ConnectionMode.REPLICA:
            return
        if self._client is None:
            await self.open()
        assert self._client is not None
        await self._client.sync()
        self._logger.info("replica_sync_completed", initial=False)

    async def check_health(self) -> HealthStatus:
        try:
            await self.execute("SELECT 1")
        except StorageError as exc:
            return HealthStatus(healthy=False, error=str(exc))
        return HealthStatus(healthy=True)

    async def close(self) -> None:
        """Cancel background sync and release the client. Safe to repeat."""
        self._closed = True
        task, self._sync_task = self._sync_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        client, self._client = self._client, None
        if client is None:
            return
        await client.close()
        self._logger.info("connection_closed", mode=self.mode.value)
