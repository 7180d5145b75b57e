"""Scooty listing (``scootyRentals/{id}``) model."""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from pydantic import model_validator

from campuspay.models._base import CampusModel, Money, StoreTimestamp


class ListingStatus(StrEnum):
    AVAILABLE = "available"
    RENTED = "rented"
    UNAVAILABLE = "unavailable"


RENTER_FIELDS: tuple[str, ...] = (
    "currentRenterId",
    "currentRenterName",
    "rentalStart",
    "rentalEnd",
)
"""Stored fields that are written together on rent and removed together on return."""


class ScootyListing(CampusModel):
    """A moped offered for hourly rent by its owner.

    The renter fields are only meaningful as a group and only while the
    listing is rented.
    """

    id: str
    owner_id: str
    owner_name: str = ""
    model: str
    price_per_hour: Money
    status: ListingStatus = ListingStatus.AVAILABLE
    current_renter_id: str | None = None
    current_renter_name: str | None = None
    rental_start: StoreTimestamp = None
    rental_end: StoreTimestamp = None
    created_at: StoreTimestamp = None

    @model_validator(mode="after")
    def _renter_matches_status(self) -> ScootyListing:
        rented = self.status == ListingStatus.RENTED
        if rented != (self.current_renter_id is not None):
            raise ValueError(
                f"listing {self.id}: currentRenterId must be set exactly when status is rented (status={self.status})"
            )
        return self

    def cost_for(self, hours: Decimal) -> Decimal:
        return self.price_per_hour * hours
