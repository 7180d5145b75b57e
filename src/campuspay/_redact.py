"""Helpers for safe debug logging.

Store requests carry the API key and the member's id token, and documents
in ``users`` carry the member's email.  This module redacts those before
request payloads are written to DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "key",
        "apikey",
        "idtoken",
        "token",
        "authorization",
        "password",
        "email",
    }
)

_REDACTED = "<redacted>"
_MAX_DEPTH = 20


def _normalize_key(key: Any) -> str:
    """``api_key``, ``Api-Key`` and ``apiKey`` all normalise to ``apikey``."""
    return str(key).replace("_", "").replace("-", "").lower()


def is_sensitive(key: Any) -> bool:
    return _normalize_key(key) in _SENSITIVE_KEYS


def _filters_sensitive_field(value: Mapping[str, Any]) -> bool:
    # {"fieldFilter": {"field": {"fieldPath": "email"}, "op": "EQUAL", "value": {...}}}
    field = value.get("field")
    return isinstance(field, Mapping) and is_sensitive(field.get("fieldPath", ""))


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted, log-friendly copy of *value*.

    Sensitive keys are masked wherever they appear, as are the operands of
    query filters on sensitive fields.  Money and timestamps render as
    plain strings.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, Decimal):
        return str(value)

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}...<{len(value) - max_string} more chars>"
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        mask_operand = _filters_sensitive_field(value)
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            if is_sensitive(k) or (mask_operand and k == "value"):
                redacted[str(k)] = _REDACTED
            else:
                redacted[str(k)] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
