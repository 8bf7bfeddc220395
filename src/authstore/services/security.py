"""Identifier quoting and log redaction.

Identifiers are validated when model descriptors and filters are built; the
helpers here render them into SQL and keep secrets out of debug logs.
"""

from collections.abc import Mapping
from typing import Any

from authstore.errors import QueryError
from authstore.models.base import ensure_identifier

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "token",
        "secret",
        "key",
        "hash",
        "salt",
        "email",
        "phonenumber",
        "ssn",
        "creditcard",
        "personalid",
        "sessiontoken",
        "accesstoken",
        "refreshtoken",
        "idtoken",
        "apikey",
        "clientsecret",
        "privatekey",
        "encryptionkey",
        "authtoken",
    }
)


def quote_identifier(identifier: str) -> str:
    """Validate and double-quote a table or column name."""
    try:
        name = ensure_identifier(identifier, "identifier")
    except ValueError as exc:
        raise QueryError(str(exc)) from exc
    return '"' + name.replace('"', '""') + '"'


def _is_sensitive(key: str) -> bool:
    lowered = key.lower().replace("_", "")
    return lowered in SENSITIVE_KEYS or "password" in lowered or "token" in lowered or "secret" in lowered


def redact(data: Any) -> Any:
    """Return a copy of ``data`` with secret-looking keys masked, recursively."""
    if isinstance(data, Mapping):
        return {
            key: REDACTED if isinstance(key, str) and _is_sensitive(key) else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(item) for item in data]
    return data
