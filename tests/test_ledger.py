from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from campuspay.exceptions import ConflictError, InvalidAmountError, NotFoundError
from campuspay.ledger import Ledger
from campuspay.models import Identity, Role, TransactionKind
from campuspay.store.base import Write
from campuspay.store.memory import FallbackStore

_FROZEN = datetime(2024, 1, 1, tzinfo=UTC)


def _frozen_clock() -> datetime:
    return _FROZEN


async def _funded(amount: int, *, latency: float = 0.0, retries: int = 5) -> tuple[FallbackStore, Ledger]:
    store = FallbackStore(latency=latency)
    ledger = Ledger(store, conflict_retries=retries, clock=_frozen_clock)
    if amount:
        await ledger.top_up("acct", amount)
    return store, ledger


@pytest.mark.asyncio
async def test_charge_within_balance() -> None:
    _, ledger = await _funded(330)

    assert await ledger.charge("acct", 120, "Cafeteria") is True

    assert await ledger.get_balance("acct") == Decimal(210)
    latest = (await ledger.history("acct"))[0]
    assert latest.kind == TransactionKind.PAYMENT
    assert latest.amount == Decimal(120)
    assert latest.description == "Cafeteria"


@pytest.mark.asyncio
async def test_history_is_most_recent_first() -> None:
    _, ledger = await _funded(500)
    await ledger.charge("acct", 120, "Cafeteria purchase")
    await ledger.charge("acct", 50, "Stationery store")

    history = await ledger.history("acct")

    assert await ledger.get_balance("acct") == Decimal(330)
    assert [(tx.kind, tx.amount) for tx in history] == [
        (TransactionKind.PAYMENT, Decimal(50)),
        (TransactionKind.PAYMENT, Decimal(120)),
        (TransactionKind.TOPUP, Decimal(500)),
    ]
    # Same wall clock for all three; timestamps are still strictly increasing.
    assert history[0].timestamp is not None and history[2].timestamp is not None
    assert history[0].timestamp > history[1].timestamp > history[2].timestamp  # type: ignore[operator]


@pytest.mark.asyncio
async def test_insufficient_funds_is_false_and_changes_nothing() -> None:
    store, ledger = await _funded(80)

    assert await ledger.charge("acct", 100, "Too much") is False

    assert await ledger.get_balance("acct") == Decimal(80)
    assert store.document_count("transactions") == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, "abc", float("nan"), True])
async def test_invalid_amount_rejected_before_store(amount: object) -> None:
    store, ledger = await _funded(0)

    with pytest.raises(InvalidAmountError):
        await ledger.charge("acct", amount)
    with pytest.raises(InvalidAmountError):
        await ledger.top_up("acct", amount)

    assert store.document_count("users") == 0
    assert store.document_count("transactions") == 0


@pytest.mark.asyncio
async def test_account_is_created_lazily_with_zero_balance() -> None:
    store, ledger = await _funded(0)

    assert await ledger.get_balance("fresh") == Decimal(0)
    assert store.document_count("users") == 1


@pytest.mark.asyncio
async def test_concurrent_charges_cannot_overdraw() -> None:
    _, ledger = await _funded(100, latency=0.001)

    results = await asyncio.gather(
        ledger.charge("acct", 60, "first"),
        ledger.charge("acct", 60, "second"),
    )

    assert sorted(results) == [False, True]
    assert await ledger.get_balance("acct") == Decimal(40)
    assert (await ledger.reconcile("acct")).consistent


@pytest.mark.asyncio
async def test_concurrent_top_ups_all_land() -> None:
    _, ledger = await _funded(0, latency=0.001, retries=10)

    await asyncio.gather(*(ledger.top_up("acct", 10) for _ in range(5)))

    assert await ledger.get_balance("acct") == Decimal(50)
    assert len(await ledger.history("acct")) == 5


@pytest.mark.asyncio
async def test_refund_is_a_credit() -> None:
    _, ledger = await _funded(100)
    await ledger.charge("acct", 40)

    tx = await ledger.refund("acct", 40, "Refund: rental")

    assert tx.kind == TransactionKind.REFUND
    assert await ledger.get_balance("acct") == Decimal(100)


class _AlwaysConflicting(FallbackStore):
    async def commit(self, writes: Sequence[Write]) -> dict[str, str]:
        if any(write.collection == "transactions" for write in writes):
            raise ConflictError("lost", collection="users", doc_id="acct")
        return await super().commit(writes)


@pytest.mark.asyncio
async def test_gives_up_after_retries() -> None:
    ledger = Ledger(_AlwaysConflicting(), conflict_retries=3)
    with pytest.raises(ConflictError):
        await ledger.top_up("acct", 10)


class TestStatement:
    @pytest.mark.asyncio
    async def test_statement_pairs_balance_and_log(self) -> None:
        _, ledger = await _funded(500)
        await ledger.charge("acct", 120)

        statement = await ledger.statement("acct")

        assert statement.balance == Decimal(380)
        assert len(statement.transactions) == 2

    @pytest.mark.asyncio
    async def test_reconcile_flags_divergence(self) -> None:
        store, ledger = await _funded(500)
        await store.update("users", "acct", {"walletBalance": Decimal(999)})

        result = await ledger.reconcile("acct")

        assert not result.consistent
        assert result.derived == Decimal(500)
        assert result.balance == Decimal(999)


class TestOpenAccount:
    @pytest.mark.asyncio
    async def test_creates_account_from_identity(self) -> None:
        _, ledger = await _funded(0)

        account = await ledger.open_account(Identity(uid="u1", email="ana@campus.edu", role=Role.ADMIN))

        assert account.owner_id == "u1"
        assert account.name == "ana"
        assert account.role == Role.ADMIN
        assert account.wallet_balance == Decimal(0)

    @pytest.mark.asyncio
    async def test_existing_account_is_kept(self) -> None:
        _, ledger = await _funded(0)
        await ledger.top_up("u1", 25)

        account = await ledger.open_account(Identity(uid="u1", email="ana@campus.edu"))

        assert account.wallet_balance == Decimal(25)

    @pytest.mark.asyncio
    async def test_account_lookup_does_not_create(self) -> None:
        _, ledger = await _funded(0)
        with pytest.raises(NotFoundError):
            await ledger.account("ghost")
