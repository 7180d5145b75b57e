"""Scooty rental board.

State machine per listing::

    available -> rented -> available -> ...
    available | rented -> unavailable      (owner withdrawal)

Renting is payment-gated: the renter is charged first and the listing is
only claimed after the charge succeeded.  The two live in different
documents, so there is no single commit spanning both; if the claim loses
to another renter the charge is reversed with a refund.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from campuspay.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from campuspay.ledger import Ledger, require_positive
from campuspay.models.listing import RENTER_FIELDS, ListingStatus, ScootyListing
from campuspay.store.base import SCOOTY_RENTALS, Document, DocumentStore, Filter, Update

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def rental_description(model: str, hours: Decimal) -> str:
    return f"Scooty rental: {model} for {hours} hours"


class RentalBoard:
    """List, rent, return and withdraw scooties.

    Parameters
    ----------
    store : DocumentStore
        The session's bound store.
    ledger : Ledger
        Charges renters and issues compensating refunds.
    conflict_retries : int
        Attempts per conditional listing update.
    clock : callable
        Returns the current aware datetime; stamps rental windows.
    """

    def __init__(
        self,
        store: DocumentStore,
        ledger: Ledger,
        *,
        conflict_retries: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._conflict_retries = conflict_retries
        self._clock = clock

    async def list_scooty(self, owner_id: str, owner_name: str, model: str, price_per_hour: Any) -> ScootyListing:
        price = require_positive(price_per_hour, "price_per_hour")
        model = model.strip()
        if not model:
            raise ValueError("model is required")
        doc = await self._store.add(
            SCOOTY_RENTALS,
            {
                "ownerId": owner_id,
                "ownerName": owner_name,
                "model": model,
                "pricePerHour": price,
                "status": ListingStatus.AVAILABLE.value,
                "createdAt": self._clock(),
            },
        )
        _logger.info("Listed %s (%s/h) as %s for %s", model, price, doc.id, owner_id)
        return ScootyListing.from_document(doc)

    async def get(self, listing_id: str) -> ScootyListing:
        return ScootyListing.from_document(await self._get_doc(listing_id))

    async def _get_doc(self, listing_id: str) -> Document:
        doc = await self._store.get(SCOOTY_RENTALS, listing_id)
        if doc is None:
            raise NotFoundError(SCOOTY_RENTALS, listing_id)
        return doc

    @staticmethod
    def _rentable(listing: ScootyListing, renter_id: str) -> bool:
        return listing.status == ListingStatus.AVAILABLE and listing.owner_id != renter_id

    async def rent(self, listing_id: str, renter_id: str, renter_name: str, hours: Any) -> bool:
        """Charge the renter and lease the listing for *hours*.

        Returns ``False`` with nothing changed when the listing is not
        available, belongs to the renter, or the renter cannot afford it.
        Returns ``False`` after a refund when another renter claimed the
        listing between the charge and the claim.
        """
        duration = require_positive(hours, "hours")
        doc = await self._get_doc(listing_id)
        listing = ScootyListing.from_document(doc)
        if not self._rentable(listing, renter_id):
            _logger.info("Listing %s is not rentable by %s (status=%s)", listing_id, renter_id, listing.status)
            return False

        cost = listing.cost_for(duration)
        description = rental_description(listing.model, duration)
        if not await self._ledger.charge(renter_id, cost, description):
            return False

        try:
            claimed = await self._claim(doc, renter_id, renter_name, duration)
        except Exception:
            await self._compensate(renter_id, cost, description)
            raise
        if not claimed:
            await self._compensate(renter_id, cost, description)
            return False
        _logger.info("Listing %s rented by %s for %s hours", listing_id, renter_id, duration)
        return True

    async def _claim(self, doc: Document, renter_id: str, renter_name: str, hours: Decimal) -> bool:
        for attempt in range(1, self._conflict_retries + 1):
            if not self._rentable(ScootyListing.from_document(doc), renter_id):
                return False
            start = self._clock()
            fields = {
                "status": ListingStatus.RENTED.value,
                "currentRenterId": renter_id,
                "currentRenterName": renter_name,
                "rentalStart": start,
                "rentalEnd": start + timedelta(hours=float(hours)),
            }
            try:
                await self._store.commit([Update(SCOOTY_RENTALS, doc.id, fields, expected_version=doc.version)])
            except ConflictError:
                _logger.debug("Listing %s changed before it could be claimed (attempt %d)", doc.id, attempt)
                doc = await self._get_doc(doc.id)
                continue
            return True
        return False

    async def _compensate(self, renter_id: str, cost: Decimal, description: str) -> None:
        _logger.warning("Reversing charge of %s to %s: listing could not be claimed", cost, renter_id)
        await self._ledger.refund(renter_id, cost, f"Refund: {description}")

    async def return_item(self, listing_id: str, renter_id: str | None = None) -> None:
        """End the current lease.

        Returning an ``available`` listing is a no-op.  If *renter_id* is
        given it must be the current renter or the owner.
        """
        for attempt in range(1, self._conflict_retries + 1):
            doc = await self._get_doc(listing_id)
            listing = ScootyListing.from_document(doc)
            if listing.status == ListingStatus.AVAILABLE:
                _logger.debug("Listing %s already available", listing_id)
                return
            if listing.status != ListingStatus.RENTED:
                raise InvalidTransitionError(
                    f"listing {listing_id} is {listing.status}, not rented",
                    current_status=listing.status,
                )
            if renter_id is not None and renter_id not in (listing.current_renter_id, listing.owner_id):
                raise PermissionDeniedError(f"{renter_id} is not renting listing {listing_id}")
            try:
                await self._store.commit(
                    [
                        Update(
                            SCOOTY_RENTALS,
                            listing_id,
                            {"status": ListingStatus.AVAILABLE.value},
                            expected_version=doc.version,
                            delete=RENTER_FIELDS,
                        )
                    ]
                )
            except ConflictError:
                _logger.debug("Listing %s changed during return (attempt %d)", listing_id, attempt)
                continue
            _logger.info("Listing %s returned by %s", listing_id, listing.current_renter_id)
            return
        raise ConflictError(
            f"listing {listing_id} still conflicting after {self._conflict_retries} attempts",
            collection=SCOOTY_RENTALS,
            doc_id=listing_id,
        )

    async def withdraw(self, listing_id: str, owner_id: str) -> None:
        """Take a listing off the board; any current lease ends with it."""
        for attempt in range(1, self._conflict_retries + 1):
            doc = await self._get_doc(listing_id)
            listing = ScootyListing.from_document(doc)
            if listing.owner_id != owner_id:
                raise PermissionDeniedError(f"{owner_id} does not own listing {listing_id}")
            if listing.status == ListingStatus.UNAVAILABLE:
                return
            try:
                await self._store.commit(
                    [
                        Update(
                            SCOOTY_RENTALS,
                            listing_id,
                            {"status": ListingStatus.UNAVAILABLE.value},
                            expected_version=doc.version,
                            delete=RENTER_FIELDS,
                        )
                    ]
                )
            except ConflictError:
                _logger.debug("Listing %s changed during withdrawal (attempt %d)", listing_id, attempt)
                continue
            _logger.info("Listing %s withdrawn by %s", listing_id, owner_id)
            return
        raise ConflictError(
            f"listing {listing_id} still conflicting after {self._conflict_retries} attempts",
            collection=SCOOTY_RENTALS,
            doc_id=listing_id,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def available(self, viewer_id: str | None = None) -> list[ScootyListing]:
        """Listings the viewer could rent now, cheapest first."""
        docs = await self._store.query(SCOOTY_RENTALS, [Filter("status", "==", ListingStatus.AVAILABLE.value)])
        listings = [ScootyListing.from_document(doc) for doc in docs]
        return sorted(
            (listing for listing in listings if listing.owner_id != viewer_id),
            key=lambda listing: listing.price_per_hour,
        )

    async def rentals_for(self, renter_id: str) -> list[ScootyListing]:
        docs = await self._store.query(SCOOTY_RENTALS, [Filter("currentRenterId", "==", renter_id)])
        return [ScootyListing.from_document(doc) for doc in docs]

    async def listings_for(self, owner_id: str) -> list[ScootyListing]:
        docs = await self._store.query(SCOOTY_RENTALS, [Filter("ownerId", "==", owner_id)])
        return [ScootyListing.from_document(doc) for doc in docs]
