"""campuspay - Async campus wallet, ride board and scooty rentals."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("campuspay")
except PackageNotFoundError:
    __version__ = "0+local"
from campuspay.config import CampusConfig
from campuspay.exceptions import (
    AlreadyAcceptedError,
    BackendUnavailableError,
    CampusPayError,
    ConfigError,
    ConflictError,
    InvalidAmountError,
    InvalidTransitionError,
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
    StateTransitionError,
    StoreError,
    StoreTransportError,
)
from campuspay.identity import IdentityProvider, LocalIdentityProvider
from campuspay.ledger import Ledger, Reconciliation, Statement
from campuspay.models import (
    Account,
    Identity,
    ListingStatus,
    RideRequest,
    RideStatus,
    Role,
    ScootyListing,
    Transaction,
    TransactionKind,
)
from campuspay.rentals import RentalBoard
from campuspay.rides import RideBoard
from campuspay.session import CampusSession
from campuspay.store import BackendKind, BackendSelector, FallbackStore, FirestoreStore
from campuspay.sync import Subscription, SyncLayer

__all__ = [
    "Account",
    "AlreadyAcceptedError",
    "BackendKind",
    "BackendSelector",
    "BackendUnavailableError",
    "CampusConfig",
    "CampusPayError",
    "CampusSession",
    "ConfigError",
    "ConflictError",
    "FallbackStore",
    "FirestoreStore",
    "Identity",
    "IdentityProvider",
    "InvalidAmountError",
    "InvalidTransitionError",
    "Ledger",
    "ListingStatus",
    "LocalIdentityProvider",
    "NotAuthenticatedError",
    "NotFoundError",
    "PermissionDeniedError",
    "Reconciliation",
    "RentalBoard",
    "RideBoard",
    "RideRequest",
    "RideStatus",
    "Role",
    "ScootyListing",
    "StateTransitionError",
    "Statement",
    "StoreError",
    "StoreTransportError",
    "Subscription",
    "SyncLayer",
    "Transaction",
    "TransactionKind",
    "__version__",
]
