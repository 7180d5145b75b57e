"""Document store layer.

One contract (:class:`~campuspay.store.base.DocumentStore`), two
implementations: the durable :class:`~campuspay.store.firestore.FirestoreStore`
and the in-memory :class:`~campuspay.store.memory.FallbackStore`.  The
:class:`~campuspay.store.selector.BackendSelector` binds a session to exactly
one of them.
"""

from campuspay.store.base import (
    ChangeEvent,
    ChangeFeed,
    Create,
    Document,
    DocumentStore,
    Filter,
    Update,
    Write,
)
from campuspay.store.firestore import FirestoreStore
from campuspay.store.memory import FallbackStore
from campuspay.store.selector import BackendKind, BackendSelector

__all__ = [
    "BackendKind",
    "BackendSelector",
    "ChangeEvent",
    "ChangeFeed",
    "Create",
    "Document",
    "DocumentStore",
    "FallbackStore",
    "Filter",
    "FirestoreStore",
    "Update",
    "Write",
]
