from pathlib import Path
from typing import Any, ClassVar
from urllib.parse import urlsplit

from pydantic import Field, ValidationError, field_validator, model_validator

from authstore.errors import ConfigurationError
from authstore.models.base import FrozenModel
from authstore.models.enums import ConnectionMode, DateStorage, OperationKind

REMOTE_SCHEMES = frozenset({"libsql", "http", "https", "ws", "wss"})
MEMORY_URL = ":memory:"


def _is_remote_url(url: str) -> bool:
    return urlsplit(url).scheme.lower() in REMOTE_SCHEMES


class ConnectionConfig(FrozenModel):
    """Where the database lives and how to reach it."""

    url: str
    auth_token: str | None = None
    sync_url: str | None = None
    sync_interval: float | None = Field(default=None, gt=0)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("url cannot be empty")
        return value

    @field_validator("sync_url")
    @classmethod
    def _validate_sync_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if not _is_remote_url(value):
            raise ValueError("sync_url must be a remote libsql, http(s) or ws(s) URL")
        return value

    @model_validator(mode="after")
    def _validate_mode(self) -> "ConnectionConfig":
        if self.sync_url is not None and _is_remote_url(self.url):
            raise ValueError("sync_url requires a local url for the embedded replica")
        if self.sync_url is not None and self.url == MEMORY_URL:
            raise ValueError("an embedded replica needs a file-backed url")
        if self.sync_interval is not None and self.sync_url is None:
            raise ValueError("sync_interval requires sync_url")
        return self

    @property
    def mode(self) -> ConnectionMode:
        if _is_remote_url(self.url):
            return ConnectionMode.REMOTE
        if self.sync_url is not None:
            return ConnectionMode.REPLICA
        return ConnectionMode.LOCAL

    @property
    def local_path(self) -> str:
        """Filesystem path (or ``:memory:``) for local and replica modes."""
        if self.url == MEMORY_URL:
            return MEMORY_URL
        if self.url.startswith("file:"):
            parts = urlsplit(self.url)
            path = parts.path or self.url[len("file:") :]
            return str(Path(path))
        return self.url


class AdapterConfig(FrozenModel):
    """Construction options for the adapter.

    Exactly one of ``client`` (a pre-built connection) or ``config`` must be
    supplied.
    """

    OPTION_KEYS: ClassVar[frozenset[str]] = frozenset(
        {"client", "config", "use_plural", "debug_logs", "use_numeric_ids", "date_storage", "foreign_keys"}
    )

    client: Any = None
    config: ConnectionConfig | None = None
    use_plural: bool = False
    debug_logs: bool | dict[OperationKind, bool] = False
    use_numeric_ids: bool = False
    date_storage: DateStorage = DateStorage.ISO
    foreign_keys: bool = True

    @model_validator(mode="after")
    def _validate_connection_source(self) -> "AdapterConfig":
        if self.client is None and self.config is None:
            raise ValueError("either client or config must be supplied")
        if self.client is not None and self.config is not None:
            raise ValueError("client and config are mutually exclusive")
        return self

    @classmethod
    def from_options(cls, **options: Any) -> "AdapterConfig":
        """Validate keyword options, raising ConfigurationError on failure."""
        unknown = set(options) - cls.OPTION_KEYS
        if unknown:
            raise ConfigurationError(f"unknown adapter options: {', '.join(sorted(unknown))}")
        try:
            return cls.model_validate(options)
        except ValidationError as exc:
            raise ConfigurationError("invalid adapter configuration", driver_message=_first_error(exc)) from exc

    def logs_enabled(self, kind: OperationKind) -> bool:
        if isinstance(self.debug_logs, bool):
            return self.debug_logs
        return self.debug_logs.get(kind, False)


class AdapterDescriptor(FrozenModel):
    """Identity and capability flags reported to the host framework."""

    adapter_id: str = "libsql"
    adapter_name: str = "libSQL Adapter"
    use_plural: bool = False
    supports_json: bool = True
    supports_dates: bool = True
    supports_booleans: bool = True
    supports_numeric_ids: bool = True


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', '')}" if location else first.get("msg", "")


__all__ = ["ConnectionConfig", "AdapterConfig", "AdapterDescriptor", "REMOTE_SCHEMES", "MEMORY_URL"]
