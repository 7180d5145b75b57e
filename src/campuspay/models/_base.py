"""Base model and shared field types for stored records.

Every stored record inherits from :class:`CampusModel` which provides:

* ``alias_generator=to_camel`` so the camelCase document fields map
  automatically to snake_case attributes.
* :meth:`CampusModel.from_document` / :meth:`CampusModel.to_document` to
  move between typed records and raw document dicts.

Money is carried as :class:`~decimal.Decimal` end to end; floats coming
back from the durable store are converted through ``str`` so ``0.1``
stays ``0.1``.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Annotated, Any, ClassVar, Self

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from campuspay.store.base import Document

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_money(value: Any) -> Decimal:
    """Coerce a stored or user-supplied amount to a finite ``Decimal``."""
    if isinstance(value, bool):
        raise ValueError("amount must be a number, not a boolean")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("amount must be finite")
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"amount is not a number: {value!r}") from exc
    else:
        raise ValueError(f"amount must be a number, got {type(value).__name__}")
    if not result.is_finite():
        raise ValueError("amount must be finite")
    return result


def parse_timestamp(value: Any) -> datetime | None:
    """Convert a stored timestamp (datetime, epoch s/ms, ISO string) to UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip())
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError(f"unsupported timestamp value: {value!r}")


Money = Annotated[Decimal, BeforeValidator(parse_money)]
"""Annotated type that coerces stored numbers to ``Decimal``."""

StoreTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces stored timestamps to aware UTC datetimes."""


class CampusModel(BaseModel):
    """Base for records persisted in the document store."""

    id_field: ClassVar[str] = "id"
    """Attribute that carries the document id (not stored inside the document)."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @classmethod
    def from_document(cls, doc: Document) -> Self:
        """Build a typed record from a raw store document."""
        values = dict(doc.data)
        values[cls.id_field] = doc.id
        return cls.model_validate(values)

    def to_document(self) -> dict[str, Any]:
        """Return the stored field mapping (camelCase, id and ``None`` omitted)."""
        return self.model_dump(by_alias=True, exclude={self.id_field}, exclude_none=True)
