"""Exception hierarchy raised by the adapter.

Every error surfaced to the host framework derives from StorageError. When
the failure originated in the database driver, the driver's own message is
kept on ``driver_message`` and the driver exception is chained as the cause.
"""


class StorageError(Exception):
    """Base class for all adapter errors."""

    def __init__(self, message: str, driver_message: str | None = None) -> None:
        super().__init__(message)
        self.driver_message = driver_message

    def __str__(self) -> str:
        message = super().__str__()
        if self.driver_message:
            return f"{message}: {self.driver_message}"
        return message


class ConfigurationError(StorageError):
    """Invalid or conflicting construction options."""


class SchemaError(StorageError):
    """Table or column creation failed."""


class CoercionError(StorageError):
    """A value could not be converted to or from its storage form."""


class QueryError(StorageError):
    """A request referenced an unknown field or used an unsupported operator."""


class ExecutionError(StorageError):
    """The database rejected a statement."""


class ConnectionError(StorageError):
    """The transport to the database failed."""


__all__ = [
    "StorageError",
    "ConfigurationError",
    "SchemaError",
    "CoercionError",
    "QueryError",
    "ExecutionError",
    "ConnectionError",
]
