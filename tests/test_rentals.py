from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from campuspay.exceptions import (
    InvalidAmountError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from campuspay.ledger import Ledger
from campuspay.models import ListingStatus, TransactionKind
from campuspay.rentals import RentalBoard
from campuspay.store.base import Update, Write
from campuspay.store.memory import FallbackStore

_NOW = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def _clock() -> datetime:
    return _NOW


def _setup(store: FallbackStore | None = None) -> tuple[FallbackStore, Ledger, RentalBoard]:
    store = store or FallbackStore()
    ledger = Ledger(store, clock=_clock)
    return store, ledger, RentalBoard(store, ledger, clock=_clock)


@pytest.mark.asyncio
async def test_rent_declined_when_funds_short() -> None:
    store, ledger, board = _setup()
    await ledger.top_up("renter", 80)
    listing = await board.list_scooty("owner", "Owner", "Honda Activa", 50)

    assert await board.rent(listing.id, "renter", "Renter", 2) is False

    assert await ledger.get_balance("renter") == Decimal(80)
    assert (await board.get(listing.id)).status == ListingStatus.AVAILABLE
    assert store.document_count("transactions") == 1


@pytest.mark.asyncio
async def test_list_rent_return_round_trip() -> None:
    _, ledger, board = _setup()
    await ledger.top_up("renter", 300)
    listing = await board.list_scooty("owner", "Owner", "TVS Jupiter", "45.50")

    assert await board.rent(listing.id, "renter", "Renter", 2) is True

    rented = await board.get(listing.id)
    assert rented.status == ListingStatus.RENTED
    assert rented.current_renter_id == "renter"
    assert rented.current_renter_name == "Renter"
    assert rented.rental_start == _NOW
    assert rented.rental_end == _NOW + timedelta(hours=2)
    payment = (await ledger.history("renter"))[0]
    assert payment.kind == TransactionKind.PAYMENT
    assert payment.amount == Decimal("91.00")
    assert payment.description == "Scooty rental: TVS Jupiter for 2 hours"

    await board.return_item(listing.id)

    returned = await board.get(listing.id)
    assert returned.to_document() == listing.to_document()
    assert await ledger.get_balance("renter") == Decimal(300) - Decimal("91.00")


@pytest.mark.asyncio
async def test_return_is_a_no_op_when_available() -> None:
    _, _, board = _setup()
    listing = await board.list_scooty("owner", "Owner", "Honda Activa", 50)

    await board.return_item(listing.id)
    await board.return_item(listing.id)

    assert (await board.get(listing.id)).status == ListingStatus.AVAILABLE


@pytest.mark.asyncio
async def test_cannot_rent_own_or_rented_listing() -> None:
    _, ledger, board = _setup()
    await ledger.top_up("owner", 500)
    await ledger.top_up("renter", 500)
    await ledger.top_up("other", 500)
    listing = await board.list_scooty("owner", "Owner", "Honda Activa", 50)

    assert await board.rent(listing.id, "owner", "Owner", 1) is False
    assert await board.rent(listing.id, "renter", "Renter", 1) is True
    assert await board.rent(listing.id, "other", "Other", 1) is False
    assert await board.rent(listing.id, "renter", "Renter", 1) is False

    assert await ledger.get_balance("owner") == Decimal(500)
    assert await ledger.get_balance("other") == Decimal(500)
    assert await ledger.get_balance("renter") == Decimal(450)


class _RacedStore(FallbackStore):
    """Another renter claims the listing right after our charge lands."""

    def __init__(self) -> None:
        super().__init__()
        self.listing_id = ""
        self._raced = False

    async def commit(self, writes: Sequence[Write]) -> dict[str, str]:
        claiming = any(isinstance(w, Update) and w.doc_id == self.listing_id for w in writes)
        if claiming and not self._raced:
            self._raced = True
            await super().commit(
                [
                    Update(
                        "scootyRentals",
                        self.listing_id,
                        {"status": "rented", "currentRenterId": "rival", "currentRenterName": "Rival"},
                    )
                ]
            )
        return await super().commit(writes)


@pytest.mark.asyncio
async def test_lost_claim_is_refunded() -> None:
    store = _RacedStore()
    _, ledger, board = _setup(store)
    await ledger.top_up("renter", 200)
    listing = await board.list_scooty("owner", "Owner", "Suzuki Access", 55)
    store.listing_id = listing.id

    assert await board.rent(listing.id, "renter", "Renter", 2) is False

    current = await board.get(listing.id)
    assert current.current_renter_id == "rival"
    assert await ledger.get_balance("renter") == Decimal(200)
    kinds = [tx.kind for tx in await ledger.history("renter")]
    assert kinds == [TransactionKind.REFUND, TransactionKind.PAYMENT, TransactionKind.TOPUP]
    assert (await ledger.reconcile("renter")).consistent


class _BrokenClaimStore(FallbackStore):
    def __init__(self) -> None:
        super().__init__()
        self.listing_id = ""

    async def commit(self, writes: Sequence[Write]) -> dict[str, str]:
        if any(isinstance(w, Update) and w.doc_id == self.listing_id for w in writes):
            raise RuntimeError("store went away")
        return await super().commit(writes)


@pytest.mark.asyncio
async def test_unexpected_claim_failure_refunds_and_propagates() -> None:
    store = _BrokenClaimStore()
    _, ledger, board = _setup(store)
    await ledger.top_up("renter", 200)
    listing = await board.list_scooty("owner", "Owner", "Suzuki Access", 55)
    store.listing_id = listing.id

    with pytest.raises(RuntimeError):
        await board.rent(listing.id, "renter", "Renter", 1)

    assert await ledger.get_balance("renter") == Decimal(200)
    assert (await board.get(listing.id)).status == ListingStatus.AVAILABLE


@pytest.mark.asyncio
async def test_withdraw_clears_renter_and_blocks_renting() -> None:
    _, ledger, board = _setup()
    await ledger.top_up("renter", 200)
    listing = await board.list_scooty("owner", "Owner", "Honda Activa", 50)
    await board.rent(listing.id, "renter", "Renter", 1)

    with pytest.raises(PermissionDeniedError):
        await board.withdraw(listing.id, "renter")
    await board.withdraw(listing.id, "owner")

    withdrawn = await board.get(listing.id)
    assert withdrawn.status == ListingStatus.UNAVAILABLE
    assert withdrawn.current_renter_id is None
    assert withdrawn.rental_end is None
    assert await board.rent(listing.id, "renter", "Renter", 1) is False
    with pytest.raises(InvalidTransitionError):
        await board.return_item(listing.id)


@pytest.mark.asyncio
async def test_validation_and_lookup_errors() -> None:
    _, _, board = _setup()
    with pytest.raises(InvalidAmountError):
        await board.list_scooty("owner", "Owner", "Honda Activa", 0)
    listing = await board.list_scooty("owner", "Owner", "Honda Activa", 50)
    with pytest.raises(InvalidAmountError):
        await board.rent(listing.id, "renter", "Renter", 0)
    with pytest.raises(NotFoundError):
        await board.rent("missing", "renter", "Renter", 1)


@pytest.mark.asyncio
async def test_views_filter_and_sort() -> None:
    _, ledger, board = _setup()
    await ledger.top_up("renter", 500)
    pricey = await board.list_scooty("owner", "Owner", "Suzuki Access", 55)
    cheap = await board.list_scooty("owner-2", "Owner Two", "TVS Jupiter", 45)
    own = await board.list_scooty("renter", "Renter", "Honda Activa", 10)
    rented = await board.list_scooty("owner", "Owner", "Honda Dio", 40)
    await board.rent(rented.id, "renter", "Renter", 1)

    assert [listing.id for listing in await board.available("renter")] == [cheap.id, pricey.id]
    assert [listing.id for listing in await board.available()] == [own.id, cheap.id, pricey.id]
    assert [listing.id for listing in await board.rentals_for("renter")] == [rented.id]
    assert [listing.id for listing in await board.listings_for("owner")] == [pricey.id, rented.id]
