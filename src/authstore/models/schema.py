"""Model and field descriptors supplied by the host framework.

A ModelSchema is the adapter's only source of truth about a table: the
physical table name, column names and storage types are all derived from
it, never from the runtime shape of a record.
"""

from typing import Any

from pydantic import Field, ValidationInfo, field_validator, model_validator

from authstore.models.base import FrozenModel, ensure_identifier, ensure_optional_identifier
from authstore.models.enums import FieldType

PRIMARY_KEY = "id"


def pluralize(name: str) -> str:
    return name if name.endswith("s") else f"{name}s"


class FieldAttribute(FrozenModel):
    """A single typed attribute of a model.

    ``default_value`` may be a literal (emitted as a SQL ``DEFAULT``) or a
    zero-argument callable evaluated client-side on create.
    """

    type: FieldType
    required: bool = False
    unique: bool = False
    default_value: Any = None
    references: str | None = None
    field_name: str | None = None

    @field_validator("references", mode="before")
    @classmethod
    def _validate_references(cls, value: Any) -> str | None:
        return ensure_optional_identifier(value, "referenced model")

    @field_validator("field_name", mode="before")
    @classmethod
    def _validate_field_name(cls, value: Any) -> str | None:
        return ensure_optional_identifier(value, "column name")

    @model_validator(mode="after")
    def _validate_reference_target(self) -> "FieldAttribute":
        if self.type == FieldType.REFERENCE and self.references is None:
            raise ValueError("reference fields must name the referenced model")
        if self.type != FieldType.REFERENCE and self.references is not None:
            raise ValueError("only reference fields may name a referenced model")
        if self.type == FieldType.ID:
            raise ValueError("the id field is implicit and cannot be declared")
        return self

    @property
    def has_callable_default(self) -> bool:
        return callable(self.default_value)

    @property
    def has_literal_default(self) -> bool:
        return self.default_value is not None and not callable(self.default_value)


class ModelSchema(FrozenModel):
    """A named entity and its ordered field map.

    The primary key ``id`` is implicit; it is a client-generated string or a
    database-assigned integer depending on the adapter's id policy.
    """

    name: str
    fields: dict[str, FieldAttribute] = Field(min_length=1)
    table_name: str | None = None

    @field_validator("name", "table_name", mode="before")
    @classmethod
    def _validate_names(cls, value: Any, info: ValidationInfo) -> str | None:
        if value is None and info.field_name == "table_name":
            return None
        return ensure_identifier(value, info.field_name or "name")

    @field_validator("fields", mode="before")
    @classmethod
    def _validate_field_names(cls, value: Any) -> Any:
        if isinstance(value, dict):
            for field_name in value:
                ensure_identifier(field_name, "field name")
                if field_name == PRIMARY_KEY:
                    raise ValueError("the id field is implicit and cannot be declared")
        return value

    @model_validator(mode="after")
    def _validate_unique_columns(self) -> "ModelSchema":
        columns = [self.column_for(name) for name in self.fields]
        if len(set(columns)) != len(columns) or PRIMARY_KEY in columns:
            raise ValueError(f"model '{self.name}' maps two fields to the same column")
        return self

    def physical_table(self, use_plural: bool) -> str:
        if self.table_name is not None:
            return self.table_name
        return pluralize(self.name) if use_plural else self.name

    def has_field(self, field: str) -> bool:
        return field == PRIMARY_KEY or field in self.fields

    def column_for(self, field: str) -> str:
        if field == PRIMARY_KEY:
            return PRIMARY_KEY
        attribute = self.fields[field]
        return attribute.field_name or field

    def field_type(self, field: str) -> FieldType:
        if field == PRIMARY_KEY:
            return FieldType.ID
        return self.fields[field].type

    def field_for_column(self, column: str) -> str | None:
        if column == PRIMARY_KEY:
            return PRIMARY_KEY
        for name, attribute in self.fields.items():
            if (attribute.field_name or name) == column:
                return name
        return None

    def referenced_models(self) -> list[str]:
        return [attribute.references for attribute in self.fields.values() if attribute.references is not None]


__all__ = ["FieldAttribute", "ModelSchema", "PRIMARY_KEY", "pluralize"]
