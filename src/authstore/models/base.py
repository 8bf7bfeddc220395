import re
from typing import Any

from pydantic import BaseModel, ConfigDict

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 64


class FrozenModel(BaseModel):
    """Base class for immutable, strictly-validated value objects."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


def ensure_identifier(value: Any, kind: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{kind} must be a string")
    name = value.strip()
    if not name:
        raise ValueError(f"{kind} cannot be empty")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"{kind} exceeds maximum length of {MAX_IDENTIFIER_LENGTH} characters")
    if not IDENTIFIER_PATTERN.match(name):
        raise ValueError(
            f"invalid {kind} '{name}': must start with a letter and contain only letters, digits and underscores"
        )
    return name


def ensure_optional_identifier(value: Any, kind: str) -> str | None:
    if value is None:
        return None
    return ensure_identifier(value, kind)

