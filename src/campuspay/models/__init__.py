"""Data models for stored records."""

from campuspay.models._base import CampusModel, Money, StoreTimestamp, parse_money, parse_timestamp
from campuspay.models.account import Account, Role
from campuspay.models.identity import Identity
from campuspay.models.listing import RENTER_FIELDS, ListingStatus, ScootyListing
from campuspay.models.ride import RideRequest, RideStatus
from campuspay.models.transaction import Transaction, TransactionKind, derive_balance

__all__ = [
    "Account",
    "CampusModel",
    "Identity",
    "ListingStatus",
    "Money",
    "RENTER_FIELDS",
    "RideRequest",
    "RideStatus",
    "Role",
    "ScootyListing",
    "StoreTimestamp",
    "Transaction",
    "TransactionKind",
    "derive_balance",
    "parse_money",
    "parse_timestamp",
]
