"""Wallet transaction (``transactions/{id}``) model."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from enum import StrEnum

from pydantic import Field, field_validator

from campuspay.models._base import CampusModel, Money, StoreTimestamp


class TransactionKind(StrEnum):
    TOPUP = "topup"
    PAYMENT = "payment"
    REFUND = "refund"
    RENTAL = "rental"

    @property
    def is_credit(self) -> bool:
        return self in (TransactionKind.TOPUP, TransactionKind.REFUND)


class Transaction(CampusModel):
    """One immutable entry of a member's append-only log.

    ``amount`` is always positive; the direction comes from ``kind``.
    """

    id: str
    owner_id: str = Field(alias="userId")
    amount: Money
    kind: TransactionKind = Field(alias="type")
    description: str = ""
    timestamp: StoreTimestamp = None

    @field_validator("amount")
    @classmethod
    def _positive(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("transaction amount must be positive")
        return value

    @property
    def signed_amount(self) -> Decimal:
        """Amount with its effect on the balance: credits positive, debits negative."""
        return self.amount if self.kind.is_credit else -self.amount


def derive_balance(transactions: Iterable[Transaction]) -> Decimal:
    """Recompute a balance from its log (the source of truth)."""
    return sum((tx.signed_amount for tx in transactions), Decimal(0))
