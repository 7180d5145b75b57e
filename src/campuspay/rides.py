"""Ride request board.

State machine per request::

    pending -> accepted -> completed
    pending -> cancelled

Each transition is a conditional update against the version that was read,
so of two drivers accepting the same request only the first commit lands;
the second re-reads, finds the request no longer pending, and fails with
:class:`~campuspay.exceptions.AlreadyAcceptedError`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from campuspay.exceptions import (
    AlreadyAcceptedError,
    CampusPayError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from campuspay.models.ride import RideRequest, RideStatus
from campuspay.store.base import RIDE_REQUESTS, DocumentStore, Filter, Update

_logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)

#: Returns the error that forbids the transition, or ``None`` if it may proceed.
_Guard = Callable[[RideRequest], CampusPayError | None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _newest_first(rides: list[RideRequest]) -> list[RideRequest]:
    return sorted(rides, key=lambda ride: ride.created_at or _EPOCH, reverse=True)


class RideBoard:
    """Create, accept, complete and cancel ride requests."""

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

    async def request(self, rider_id: str, rider_name: str, pickup: str, dropoff: str) -> RideRequest:
        pickup, dropoff = pickup.strip(), dropoff.strip()
        if not pickup or not dropoff:
            raise ValueError("pickup and dropoff are required")
        doc = await self._store.add(
            RIDE_REQUESTS,
            {
                "riderId": rider_id,
                "riderName": rider_name,
                "pickup": pickup,
                "dropoff": dropoff,
                "status": RideStatus.PENDING.value,
                "timestamp": self._clock(),
            },
        )
        _logger.info("Ride %s requested by %s: %s -> %s", doc.id, rider_id, pickup, dropoff)
        return RideRequest.from_document(doc)

    async def get(self, request_id: str) -> RideRequest:
        doc = await self._store.get(RIDE_REQUESTS, request_id)
        if doc is None:
            raise NotFoundError(RIDE_REQUESTS, request_id)
        return RideRequest.from_document(doc)

    async def offer(self, request_id: str, driver_id: str, driver_name: str) -> None:
        """Accept a pending request as its driver; first accept wins."""

        def guard(ride: RideRequest) -> CampusPayError | None:
            if ride.status != RideStatus.PENDING:
                return AlreadyAcceptedError(
                    f"ride {request_id} is {ride.status}, not pending",
                    current_status=ride.status,
                )
            if ride.rider_id == driver_id:
                return PermissionDeniedError(f"{driver_id} cannot drive their own ride request")
            return None

        await self._transition(
            request_id,
            guard,
            {
                "status": RideStatus.ACCEPTED.value,
                "driverId": driver_id,
                "driverName": driver_name,
            },
        )
        _logger.info("Ride %s accepted by %s", request_id, driver_id)

    async def complete(self, request_id: str, driver_id: str | None = None) -> None:
        """Finish an accepted ride.  If *driver_id* is given it must be the ride's driver."""

        def guard(ride: RideRequest) -> CampusPayError | None:
            if ride.status != RideStatus.ACCEPTED:
                return InvalidTransitionError(
                    f"ride {request_id} is {ride.status}, not accepted",
                    current_status=ride.status,
                )
            if driver_id is not None and ride.driver_id != driver_id:
                return PermissionDeniedError(f"{driver_id} is not the driver of ride {request_id}")
            return None

        await self._transition(
            request_id,
            guard,
            {"status": RideStatus.COMPLETED.value, "completedAt": self._clock()},
        )
        _logger.info("Ride %s completed", request_id)

    async def cancel(self, request_id: str, rider_id: str) -> None:
        """Withdraw a request that no driver has accepted yet."""

        def guard(ride: RideRequest) -> CampusPayError | None:
            if ride.rider_id != rider_id:
                return PermissionDeniedError(f"{rider_id} did not request ride {request_id}")
            if ride.status != RideStatus.PENDING:
                return InvalidTransitionError(
                    f"ride {request_id} is {ride.status}, not pending",
                    current_status=ride.status,
                )
            return None

        await self._transition(request_id, guard, {"status": RideStatus.CANCELLED.value})
        _logger.info("Ride %s cancelled by %s", request_id, rider_id)

    async def _transition(self, request_id: str, guard: _Guard, fields: Mapping[str, Any]) -> None:
        for attempt in range(1, self._conflict_retries + 1):
            doc = await self._store.get(RIDE_REQUESTS, request_id)
            if doc is None:
                raise NotFoundError(RIDE_REQUESTS, request_id)
            error = guard(RideRequest.from_document(doc))
            if error is not None:
                raise error
            try:
                await self._store.commit([Update(RIDE_REQUESTS, request_id, fields, expected_version=doc.version)])
            except ConflictError:
                _logger.debug("Ride %s changed underneath us (attempt %d)", request_id, attempt)
                continue
            return
        raise ConflictError(
            f"ride {request_id} still conflicting after {self._conflict_retries} attempts",
            collection=RIDE_REQUESTS,
            doc_id=request_id,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def open_requests(self, viewer_id: str | None = None) -> list[RideRequest]:
        """Pending requests a driver could accept, excluding the viewer's own."""
        docs = await self._store.query(RIDE_REQUESTS, [Filter("status", "==", RideStatus.PENDING.value)])
        rides = [RideRequest.from_document(doc) for doc in docs]
        return _newest_first([ride for ride in rides if ride.rider_id != viewer_id])

    async def rides_for(self, rider_id: str) -> list[RideRequest]:
        docs = await self._store.query(RIDE_REQUESTS, [Filter("riderId", "==", rider_id)])
        return _newest_first([RideRequest.from_document(doc) for doc in docs])

    async def drives_for(self, driver_id: str) -> list[RideRequest]:
        docs = await self._store.query(RIDE_REQUESTS, [Filter("driverId", "==", driver_id)])
        return _newest_first([RideRequest.from_document(doc) for doc in docs])
