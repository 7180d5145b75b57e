"""Store contract shared by the durable and in-memory backends.

Every mutation of shared state goes through :meth:`DocumentStore.commit`
with conditional writes: an :class:`Update` carrying ``expected_version``
only applies if nobody else wrote the document since it was read, and a
:class:`Create` only applies if the document does not exist yet.  A commit
is all-or-nothing.
"""

from __future__ import annotations

import copy
import logging
import secrets
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

_logger = logging.getLogger(__name__)


def new_document_id() -> str:
    """Random 20-character id, the same shape the durable store generates."""
    return secrets.token_hex(10)


@dataclass(frozen=True, slots=True)
class Document:
    """A point-in-time read of one stored document."""

    collection: str
    id: str
    data: dict[str, Any]
    version: str


@dataclass(frozen=True, slots=True)
class Filter:
    """Equality / inequality predicate on a top-level field."""

    field: str
    op: Literal["==", "!="]
    value: Any

    def matches(self, data: Mapping[str, Any]) -> bool:
        actual = data.get(self.field)
        if self.op == "==":
            return bool(actual == self.value)
        # Documents without the field never match an inequality.
        return self.field in data and bool(actual != self.value)


def matches_all(data: Mapping[str, Any], filters: Sequence[Filter]) -> bool:
    return all(f.matches(data) for f in filters)


@dataclass(frozen=True, slots=True)
class Create:
    """Create a document; fails if it already exists."""

    collection: str
    doc_id: str
    data: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class Update:
    """Set (and optionally delete) fields on an existing document.

    ``expected_version`` makes the write conditional on the version that
    was read; ``None`` only requires the document to exist.
    """

    collection: str
    doc_id: str
    fields: Mapping[str, Any]
    expected_version: str | None = None
    delete: tuple[str, ...] = ()


Write = Create | Update


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Notification that a document was written.

    ``data`` holds what the write changed: the whole document for a
    :class:`Create`, otherwise the fields set, with deleted fields mapped
    to ``None``.  Listeners that need the full document read it back.
    """

    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_write(cls, write: Write) -> ChangeEvent:
        if isinstance(write, Create):
            data = copy.deepcopy(dict(write.data))
        else:
            data = copy.deepcopy(dict(write.fields))
            data.update(dict.fromkeys(write.delete))
        return cls(collection=write.collection, doc_id=write.doc_id, data=data)


ChangeListener = Callable[[ChangeEvent], None]


class ChangeFeed:
    """Per-collection listener registry used by the store implementations."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[ChangeListener]] = {}

    def subscribe(self, collection: str, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener*; returns an idempotent unsubscribe function."""
        self._listeners.setdefault(collection, []).append(listener)

        def _unsubscribe() -> None:
            listeners = self._listeners.get(collection)
            if listeners is not None and listener in listeners:
                listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        # Iterate over a copy: listeners may unsubscribe while being notified.
        for listener in list(self._listeners.get(event.collection, ())):
            try:
                listener(copy.deepcopy(event))
            except Exception:
                _logger.debug("Change listener failed for %s/%s", event.collection, event.doc_id, exc_info=True)


class DocumentStore(Protocol):
    """Structural store interface used by the ledger and the boards.

    Having a protocol here makes it easy to pass test doubles while keeping
    both production stores concrete.
    """

    async def probe(self) -> None:
        """Raise :class:`~campuspay.exceptions.BackendUnavailableError` if unreachable."""
        ...

    async def get(self, collection: str, doc_id: str) -> Document | None: ...

    async def query(self, collection: str, filters: Sequence[Filter] = ()) -> list[Document]: ...

    async def commit(self, writes: Sequence[Write]) -> dict[str, str]:
        """Apply *writes* atomically; returns the new version per ``collection/id``."""
        ...

    async def add(self, collection: str, data: Mapping[str, Any]) -> Document: ...

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        *,
        expected_version: str | None = None,
        delete: tuple[str, ...] = (),
    ) -> Document: ...

    def subscribe(self, collection: str, listener: ChangeListener) -> Callable[[], None]: ...


def doc_key(collection: str, doc_id: str) -> str:
    return f"{collection}/{doc_id}"


USERS = "users"
TRANSACTIONS = "transactions"
RIDE_REQUESTS = "rideRequests"
SCOOTY_RENTALS = "scootyRentals"
