"""Conversion between logical field values and SQLite storage values.

Every decision is driven by the declared FieldType, never by the runtime
type of the value. The pair is pure: no I/O and no shared state.

Storage forms:
    boolean     INTEGER 0/1
    date        ISO-8601 TEXT, or INTEGER epoch milliseconds (aware values only)
    json        serialized TEXT
    number      passed through
    string      passed through
    id / ref    passed through, or INTEGER when numeric ids are enabled
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any

from authstore.errors import CoercionError
from authstore.models.enums import DateStorage, FieldType

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def to_storage(
    value: Any,
    field_type: FieldType,
    *,
    date_storage: DateStorage = DateStorage.ISO,
    numeric_ids: bool = False,
) -> Any:
    """Convert a logical value to the form bound as a statement argument."""
    if value is None:
        return None

    match field_type:
        case FieldType.BOOLEAN:
            return _boolean_to_storage(value)
        case FieldType.DATE:
            return _date_to_storage(value, date_storage)
        case FieldType.JSON:
            return _json_to_storage(value)
        case FieldType.ID | FieldType.REFERENCE:
            return _id_to_storage(value, numeric_ids)
        case _:
            return value


def from_storage(
    value: Any,
    field_type: FieldType,
    *,
    numeric_ids: bool = False,
) -> Any:
    """Convert a stored column value back to its logical form.

    Dates are parsed from whichever representation was stored, so the
    connection's date storage setting is not needed on read.
    """
    if value is None:
        return None

    match field_type:
        case FieldType.BOOLEAN:
            return _boolean_from_storage(value)
        case FieldType.DATE:
            return _date_from_storage(value)
        case FieldType.JSON:
            return _json_from_storage(value)
        case FieldType.ID | FieldType.REFERENCE:
            return _id_from_storage(value, numeric_ids)
        case _:
            return value


def _boolean_to_storage(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int) and value in (0, 1):
        return value
    raise CoercionError(f"expected a boolean, got {type(value).__name__}")


def _boolean_from_storage(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    try:
        return int(value) != 0
    except (TypeError, ValueError) as exc:
        raise CoercionError(f"stored boolean is not an integer: {value!r}") from exc


def _date_to_storage(value: Any, date_storage: DateStorage) -> str | int:
    if isinstance(value, str):
        value = _parse_iso(value)
    if not isinstance(value, datetime):
        raise CoercionError(f"expected a datetime, got {type(value).__name__}")
    if date_storage == DateStorage.EPOCH:
        if value.tzinfo is None:
            raise CoercionError("epoch date storage requires a timezone-aware datetime")
        if value.microsecond % 1000:
            raise CoercionError("epoch date storage keeps millisecond precision; got microseconds")
        return (value - EPOCH) // _MILLISECOND
    return value.isoformat()


def _date_from_storage(value: Any) -> datetime:
    if isinstance(value, bool):
        raise CoercionError(f"stored date is not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch_millis(value)
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return _from_epoch_millis(int(text))
        return _parse_iso(text)
    raise CoercionError(f"stored date has unsupported type {type(value).__name__}")


def _from_epoch_millis(value: int | float) -> datetime:
    try:
        return EPOCH + timedelta(milliseconds=value)
    except OverflowError as exc:
        raise CoercionError(f"stored epoch timestamp out of range: {value!r}") from exc


def _parse_iso(text: str) -> datetime:
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise CoercionError(f"unparseable date: {text!r}", driver_message=str(exc)) from exc


def _json_to_storage(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise CoercionError("value is not JSON serializable", driver_message=str(exc)) from exc


def _json_from_storage(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if not isinstance(value, str):
        raise CoercionError(f"stored JSON is not text: {type(value).__name__}")
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise CoercionError("malformed JSON in storage", driver_message=str(exc)) from exc


def _id_to_storage(value: Any, numeric_ids: bool) -> Any:
    if not numeric_ids:
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    raise CoercionError(f"numeric ids are enabled but got {value!r}")


def _id_from_storage(value: Any, numeric_ids: bool) -> Any:
    if numeric_ids and isinstance(value, str) and value.isdigit():
        return int(value)
    return value
