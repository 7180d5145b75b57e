"""Typed-value codec for the document store REST API.

The REST API wraps every field value in a one-key object naming its type
(``{"stringValue": "x"}``, ``{"integerValue": "3"}``, ...).  This module
converts between those and plain Python values.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

# The store reports up to nanoseconds; datetime keeps microseconds.
_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(_EXCESS_FRACTION.sub(r"\1", value))


def encode_value(value: Any) -> dict[str, Any]:
    """Wrap a Python value in its typed REST representation."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, Decimal):
        # Whole amounts stay integers so equality filters match either way.
        if value == value.to_integral_value():
            return {"integerValue": str(int(value))}
        return {"doubleValue": float(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": _format_timestamp(value)}
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"cannot encode {type(value).__name__} for the document store")


def decode_value(wrapped: Mapping[str, Any]) -> Any:
    """Unwrap a typed REST value into a Python value."""
    if "nullValue" in wrapped:
        return None
    if "booleanValue" in wrapped:
        return bool(wrapped["booleanValue"])
    if "integerValue" in wrapped:
        return int(wrapped["integerValue"])
    if "doubleValue" in wrapped:
        return Decimal(str(wrapped["doubleValue"]))
    if "stringValue" in wrapped:
        return str(wrapped["stringValue"])
    if "timestampValue" in wrapped:
        return _parse_timestamp(str(wrapped["timestampValue"]))
    if "mapValue" in wrapped:
        return decode_fields(wrapped["mapValue"].get("fields") or {})
    if "arrayValue" in wrapped:
        return [decode_value(v) for v in wrapped["arrayValue"].get("values") or []]
    raise ValueError(f"unsupported value type: {sorted(wrapped)}")


def encode_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    return {key: encode_value(value) for key, value in data.items()}


def decode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}
