"""Member account (``users/{ownerId}``) model."""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from typing import ClassVar

from pydantic import Field

from campuspay.models._base import CampusModel, Money, StoreTimestamp


class Role(StrEnum):
    ADMIN = "admin"
    STUDENT = "student"


class Account(CampusModel):
    """A member's wallet account.

    ``wallet_balance`` is a cached projection of the member's transaction
    log; only :class:`campuspay.ledger.Ledger` writes it, always in the
    same commit as the transaction it accounts for.
    """

    id_field: ClassVar[str] = "owner_id"

    owner_id: str
    email: str = ""
    name: str = ""
    wallet_balance: Money = Field(default=Decimal(0))
    role: Role | None = None
    created_at: StoreTimestamp = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.owner_id
