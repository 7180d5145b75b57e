"""Sample community for the in-memory store.

The in-memory store starts from representative data so a session without
the durable store still has something to show: a couple of open ride
requests, a few scooties to rent, and, per member, a short wallet history
whose balance agrees with its log.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from campuspay.exceptions import ConflictError
from campuspay.models.account import Role
from campuspay.models.identity import Identity
from campuspay.models.listing import ListingStatus
from campuspay.models.ride import RideStatus
from campuspay.models.transaction import TransactionKind
from campuspay.store.base import (
    RIDE_REQUESTS,
    SCOOTY_RENTALS,
    TRANSACTIONS,
    USERS,
    Create,
    DocumentStore,
    Write,
    new_document_id,
)

_logger = logging.getLogger(__name__)

_SAMPLE_RIDES: tuple[dict[str, Any], ...] = (
    {
        "id": "sample-ride-1",
        "riderId": "sample-member-1",
        "riderName": "John Doe",
        "pickup": "University Main Gate",
        "dropoff": "Engineering Block",
        "age": timedelta(hours=1),
    },
    {
        "id": "sample-ride-2",
        "riderId": "sample-member-2",
        "riderName": "Jane Smith",
        "pickup": "Girls Hostel",
        "dropoff": "Library",
        "age": timedelta(minutes=30),
    },
)

_SAMPLE_SCOOTIES: tuple[dict[str, Any], ...] = (
    {"id": "sample-scooty-1", "ownerId": "sample-owner-1", "ownerName": "Alex Johnson", "model": "Honda Activa", "pricePerHour": Decimal(50)},
    {"id": "sample-scooty-2", "ownerId": "sample-owner-2", "ownerName": "Sarah Williams", "model": "TVS Jupiter", "pricePerHour": Decimal(45)},
    {"id": "sample-scooty-3", "ownerId": "sample-owner-3", "ownerName": "Michael Brown", "model": "Suzuki Access", "pricePerHour": Decimal(55)},
)

_SAMPLE_HISTORY: tuple[tuple[TransactionKind, Decimal, str, timedelta], ...] = (
    (TransactionKind.TOPUP, Decimal(500), "Wallet top-up", timedelta(days=2)),
    (TransactionKind.PAYMENT, Decimal(120), "Cafeteria purchase", timedelta(days=1)),
    (TransactionKind.PAYMENT, Decimal(50), "Stationery store", timedelta(0)),
)


async def seed_sample_data(store: DocumentStore, *, now: datetime) -> None:
    """Write the shared sample rides and listings in one commit."""
    writes: list[Write] = []
    for ride in _SAMPLE_RIDES:
        data = {k: v for k, v in ride.items() if k not in ("id", "age")}
        data.update(status=RideStatus.PENDING.value, timestamp=now - ride["age"])
        writes.append(Create(RIDE_REQUESTS, ride["id"], data))
    for scooty in _SAMPLE_SCOOTIES:
        data = {k: v for k, v in scooty.items() if k != "id"}
        data.update(status=ListingStatus.AVAILABLE.value, createdAt=now)
        writes.append(Create(SCOOTY_RENTALS, scooty["id"], data))
    await store.commit(writes)
    _logger.info("Seeded %d sample ride request(s) and %d scooty listing(s)", len(_SAMPLE_RIDES), len(_SAMPLE_SCOOTIES))


async def seed_member_wallet(store: DocumentStore, identity: Identity, *, now: datetime) -> bool:
    """Give a member a sample wallet history and two past rides.

    Returns ``False`` (and writes nothing) if the member already has an
    account.
    """
    balance = Decimal(0)
    writes: list[Write] = []
    for kind, amount, description, age in _SAMPLE_HISTORY:
        balance += amount if kind.is_credit else -amount
        writes.append(
            Create(
                TRANSACTIONS,
                new_document_id(),
                {
                    "userId": identity.uid,
                    "amount": amount,
                    "type": kind.value,
                    "description": description,
                    "timestamp": now - age,
                },
            )
        )

    account = {
        "email": identity.email,
        "name": identity.display_name,
        "walletBalance": balance,
        "role": (identity.role or Role.STUDENT).value,
        "createdAt": now - timedelta(days=3),
    }
    past_rides = (
        ("Boys Hostel", "Cafeteria", RideStatus.ACCEPTED, "sample-driver-1", "Driver One", timedelta(hours=2)),
        ("Sports Complex", "Main Gate", RideStatus.COMPLETED, "sample-driver-2", "Driver Two", timedelta(days=1)),
    )
    for pickup, dropoff, status, driver_id, driver_name, age in past_rides:
        writes.append(
            Create(
                RIDE_REQUESTS,
                new_document_id(),
                {
                    "riderId": identity.uid,
                    "riderName": identity.display_name,
                    "pickup": pickup,
                    "dropoff": dropoff,
                    "status": status.value,
                    "timestamp": now - age,
                    "driverId": driver_id,
                    "driverName": driver_name,
                },
            )
        )

    try:
        await store.commit([Create(USERS, identity.uid, account), *writes])
    except ConflictError:
        return False
    _logger.info("Seeded sample wallet for %s (balance=%s)", identity.uid, balance)
    return True
