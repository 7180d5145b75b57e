"""Custom exception hierarchy for campuspay."""

from __future__ import annotations


class CampusPayError(Exception):
    """Base exception for all campuspay errors."""


class ConfigError(CampusPayError):
    """Invalid or missing configuration."""


class InvalidAmountError(CampusPayError, ValueError):
    """A monetary input (amount, price, hours) was not strictly positive.

    Raised before the store is touched.
    """


class NotAuthenticatedError(CampusPayError):
    """A mutating operation was attempted without a signed-in member."""


class PermissionDeniedError(CampusPayError):
    """The acting member may not perform this operation on the document."""


class NotFoundError(CampusPayError):
    """The referenced account, listing or ride request does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class StateTransitionError(CampusPayError):
    """A state machine precondition did not hold.

    Usually the result of a race with another member; callers are expected
    to refresh and retry rather than treat it as fatal.
    """

    def __init__(self, message: str, *, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)


class AlreadyAcceptedError(StateTransitionError):
    """A ride request was no longer pending when a driver tried to accept it."""


class InvalidTransitionError(StateTransitionError):
    """The requested transition is not allowed from the current status."""


class StoreError(CampusPayError):
    """Base for document store failures."""


class ConflictError(StoreError):
    """A conditional write lost against a concurrent writer.

    Raised when a ``Create`` targets an existing document or an ``Update``
    carries an ``expected_version`` that no longer matches.
    """

    def __init__(self, message: str, *, collection: str = "", doc_id: str = "") -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(message)


class BackendUnavailableError(StoreError):
    """The durable store cannot be reached (network, auth, or unconfigured)."""


class StoreTransportError(StoreError):
    """HTTP-level failure talking to the durable store (non-2xx, invalid JSON).

    ``reason`` carries the canonical error status from the response body
    (e.g. ``FAILED_PRECONDITION``) when the store supplied one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str = "",
        reason: str = "",
    ) -> None:
        self.status_code = status_code
        self.path = path
        self.reason = reason
        super().__init__(message)
