"""Ride request (``rideRequests/{id}``) model."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from campuspay.models._base import CampusModel, StoreTimestamp


class RideStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RideRequest(CampusModel):
    """A rider's request for a lift; a driver is attached once, on acceptance."""

    id: str
    rider_id: str
    rider_name: str = ""
    pickup: str
    dropoff: str
    status: RideStatus = RideStatus.PENDING
    created_at: StoreTimestamp = Field(default=None, alias="timestamp")
    driver_id: str | None = None
    driver_name: str | None = None
    completed_at: StoreTimestamp = None
