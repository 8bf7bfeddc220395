from typing import Any

from pydantic import Field, field_validator, model_validator

from authstore.models.base import FrozenModel, ensure_identifier
from authstore.models.enums import Connector, Operator, SortDirection

_OPERATOR_ALIASES = {
    "startsWith": Operator.STARTS_WITH.value,
    "endsWith": Operator.ENDS_WITH.value,
}


class WhereClause(FrozenModel):
    """One predicate of a flat filter chain.

    ``connector`` joins this predicate to the one before it and is ignored
    on the first predicate.
    """

    field: str
    value: Any = None
    operator: Operator = Operator.EQ
    connector: Connector = Connector.AND

    @field_validator("field", mode="before")
    @classmethod
    def _validate_field(cls, value: Any) -> str:
        return ensure_identifier(value, "field name")

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _OPERATOR_ALIASES.get(value, value)
        return value

    @field_validator("connector", mode="before")
    @classmethod
    def _normalize_connector(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def _validate_value_shape(self) -> "WhereClause":
        if self.operator == Operator.IN:
            if not isinstance(self.value, (list, tuple, set, frozenset)):
                raise ValueError("the 'in' operator requires a list of values")
        elif isinstance(self.value, (list, tuple, set, frozenset)):
            raise ValueError(f"the '{self.operator.value}' operator requires a single value")
        if self.operator in (Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH):
            if not isinstance(self.value, str):
                raise ValueError(f"the '{self.operator.value}' operator requires a string value")
        return self


class SortBy(FrozenModel):
    field: str
    direction: SortDirection = SortDirection.ASC

    @field_validator("field", mode="before")
    @classmethod
    def _validate_field(cls, value: Any) -> str:
        return ensure_identifier(value, "sort field")

    @field_validator("direction", mode="before")
    @classmethod
    def _normalize_direction(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class CompiledStatement(FrozenModel):
    """A parameterized SQL statement and its positional arguments."""

    sql: str
    args: tuple[Any, ...] = ()


class StatementResult(FrozenModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)
    rows_affected: int = Field(default=0, ge=0)
    last_insert_rowid: int | None = None


class HealthStatus(FrozenModel):
    healthy: bool
    error: str | None = None


__all__ = ["WhereClause", "SortBy", "CompiledStatement", "StatementResult", "HealthStatus"]
