"""Wallet ledger: an append-only transaction log plus its balance projection.

Every mutation is one atomic commit of two writes: a conditional update of
``users/{ownerId}.walletBalance`` against the account version that was read,
and the creation of the ``transactions/{id}`` entry it accounts for.  A
concurrent writer on the same account makes the commit fail with
:class:`~campuspay.exceptions.ConflictError`; the ledger then re-reads the
account, re-checks the precondition and tries again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from campuspay.exceptions import ConflictError, InvalidAmountError, NotFoundError
from campuspay.models._base import parse_money
from campuspay.models.account import Account, Role
from campuspay.models.identity import Identity
from campuspay.models.transaction import Transaction, TransactionKind, derive_balance
from campuspay.store.base import (
    TRANSACTIONS,
    USERS,
    Create,
    Document,
    DocumentStore,
    Filter,
    Update,
    new_document_id,
)

_logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def require_positive(value: Any, what: str = "amount") -> Decimal:
    """Coerce *value* to ``Decimal`` and reject anything that is not > 0."""
    try:
        amount = parse_money(value)
    except ValueError as exc:
        raise InvalidAmountError(f"{what}: {exc}") from exc
    if amount <= 0:
        raise InvalidAmountError(f"{what} must be positive, got {amount}")
    return amount


@dataclass(frozen=True, slots=True)
class Statement:
    """Balance and log read as one consistent pair."""

    owner_id: str
    balance: Decimal
    transactions: tuple[Transaction, ...]


@dataclass(frozen=True, slots=True)
class Reconciliation:
    owner_id: str
    balance: Decimal
    derived: Decimal

    @property
    def consistent(self) -> bool:
        return self.balance == self.derived


class Ledger:
    """Balance and transaction history of member accounts.

    Parameters
    ----------
    store : DocumentStore
        The session's bound store.
    conflict_retries : int
        Attempts per operation before a lost race is surfaced as
        :class:`ConflictError`.
    clock : callable
        Returns the current aware datetime.  Transaction timestamps are
        forced strictly increasing so history order matches append order.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        conflict_retries: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._conflict_retries = conflict_retries
        self._clock = clock
        self._last_timestamp: datetime | None = None

    def _now(self) -> datetime:
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def open_account(self, identity: Identity) -> Account:
        """Return the member's account, creating it with a zero balance if needed."""
        data: dict[str, Any] = {
            "email": identity.email,
            "name": identity.display_name,
            "walletBalance": Decimal(0),
            "createdAt": self._clock(),
        }
        if identity.role is not None:
            data["role"] = identity.role.value
        doc = await self._ensure_account(identity.uid, data)
        return Account.from_document(doc)

    async def account(self, owner_id: str) -> Account:
        doc = await self._store.get(USERS, owner_id)
        if doc is None:
            raise NotFoundError(USERS, owner_id)
        return Account.from_document(doc)

    async def _ensure_account(self, owner_id: str, data: dict[str, Any] | None = None) -> Document:
        doc = await self._store.get(USERS, owner_id)
        if doc is not None:
            return doc
        if data is None:
            data = {
                "email": "",
                "name": "",
                "walletBalance": Decimal(0),
                "role": Role.STUDENT.value,
                "createdAt": self._clock(),
            }
        try:
            await self._store.commit([Create(USERS, owner_id, data)])
            _logger.info("Opened account %s", owner_id)
        except ConflictError:
            _logger.debug("Account %s was opened concurrently", owner_id)
        doc = await self._store.get(USERS, owner_id)
        if doc is None:
            raise NotFoundError(USERS, owner_id)
        return doc

    # ------------------------------------------------------------------
    # Balance operations
    # ------------------------------------------------------------------

    async def get_balance(self, owner_id: str) -> Decimal:
        doc = await self._ensure_account(owner_id)
        return Account.from_document(doc).wallet_balance

    async def top_up(self, owner_id: str, amount: Any) -> Transaction:
        value = require_positive(amount)
        tx = await self._append(owner_id, TransactionKind.TOPUP, value, "Wallet top-up")
        assert tx is not None  # noqa: S101
        _logger.info("Topped up %s by %s", owner_id, value)
        return tx

    async def charge(self, owner_id: str, amount: Any, description: str = "Payment") -> bool:
        """Debit *amount* if the balance covers it.

        Returns ``False`` without touching the store's state when funds are
        insufficient.  The sufficiency check and the debit commit against the
        same account version, so two concurrent charges can never both pass
        a check that only one of them fits.
        """
        value = require_positive(amount)
        tx = await self._append(owner_id, TransactionKind.PAYMENT, value, description, require_funds=True)
        if tx is None:
            _logger.info("Charge of %s on %s declined: insufficient funds", value, owner_id)
            return False
        _logger.info("Charged %s to %s (%s)", value, owner_id, description)
        return True

    async def refund(self, owner_id: str, amount: Any, description: str) -> Transaction:
        value = require_positive(amount)
        tx = await self._append(owner_id, TransactionKind.REFUND, value, description)
        assert tx is not None  # noqa: S101
        _logger.info("Refunded %s to %s (%s)", value, owner_id, description)
        return tx

    async def _append(
        self,
        owner_id: str,
        kind: TransactionKind,
        amount: Decimal,
        description: str,
        *,
        require_funds: bool = False,
    ) -> Transaction | None:
        for attempt in range(1, self._conflict_retries + 1):
            doc = await self._ensure_account(owner_id)
            balance = Account.from_document(doc).wallet_balance
            if require_funds and balance < amount:
                return None

            new_balance = balance + amount if kind.is_credit else balance - amount
            tx_id = new_document_id()
            tx_data = {
                "userId": owner_id,
                "amount": amount,
                "type": kind.value,
                "description": description,
                "timestamp": self._now(),
            }
            try:
                await self._store.commit(
                    [
                        Update(USERS, owner_id, {"walletBalance": new_balance}, expected_version=doc.version),
                        Create(TRANSACTIONS, tx_id, tx_data),
                    ]
                )
            except ConflictError:
                _logger.debug("%s on %s lost a race (attempt %d), retrying", kind, owner_id, attempt)
                continue
            return Transaction.model_validate({**tx_data, "id": tx_id})

        raise ConflictError(
            f"{kind} on {owner_id} still conflicting after {self._conflict_retries} attempts",
            collection=USERS,
            doc_id=owner_id,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def history(self, owner_id: str) -> list[Transaction]:
        """Transactions of *owner_id*, most recent first."""
        docs = await self._store.query(TRANSACTIONS, [Filter("userId", "==", owner_id)])
        ordered = sorted(
            enumerate(Transaction.from_document(doc) for doc in docs),
            key=lambda pair: (pair[1].timestamp or _EPOCH, pair[0]),
            reverse=True,
        )
        return [tx for _, tx in ordered]

    async def statement(self, owner_id: str) -> Statement:
        """Read balance and log so that one accounts exactly for the other.

        The account version is checked again after the log is read; a write
        in between means the pair may disagree and the read is repeated.
        """
        for _ in range(self._conflict_retries):
            before = await self._ensure_account(owner_id)
            transactions = await self.history(owner_id)
            after = await self._store.get(USERS, owner_id)
            if after is not None and after.version == before.version:
                balance = Account.from_document(before).wallet_balance
                return Statement(owner_id=owner_id, balance=balance, transactions=tuple(transactions))
        raise ConflictError(
            f"account {owner_id} kept changing while reading its statement",
            collection=USERS,
            doc_id=owner_id,
        )

    async def reconcile(self, owner_id: str) -> Reconciliation:
        """Compare the cached balance against the balance derived from the log."""
        statement = await self.statement(owner_id)
        result = Reconciliation(
            owner_id=owner_id,
            balance=statement.balance,
            derived=derive_balance(statement.transactions),
        )
        if not result.consistent:
            _logger.warning(
                "Balance of %s diverges from its log: cached=%s derived=%s",
                owner_id,
                result.balance,
                result.derived,
            )
        return result
