"""In-memory fallback store.

Holds the same documents the durable store would, behind the same
contract, for sessions where the durable store is unreachable or
unconfigured.  Nothing survives the process.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from campuspay.exceptions import ConflictError, NotFoundError
from campuspay.store.base import (
    ChangeEvent,
    ChangeFeed,
    ChangeListener,
    Create,
    Document,
    Filter,
    Update,
    Write,
    doc_key,
    matches_all,
    new_document_id,
)

_logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _StoredDocument:
    data: dict[str, Any]
    version: int


class FallbackStore:
    """Deterministic in-memory document store.

    Commits are serialised by an :class:`asyncio.Lock` and validated in
    full before any write is applied, so a commit is all-or-nothing.  Every
    operation yields to the event loop first (``latency`` seconds, ``0`` by
    default) so concurrent callers interleave the same way they would
    against a remote store.
    """

    def __init__(self, *, latency: float = 0.0) -> None:
        self._latency = latency
        self._collections: dict[str, dict[str, _StoredDocument]] = {}
        self._lock = asyncio.Lock()
        self._versions = itertools.count(1)
        self._feed = ChangeFeed()

    async def _pause(self) -> None:
        await asyncio.sleep(self._latency)

    def _snapshot(self, collection: str, doc_id: str, stored: _StoredDocument) -> Document:
        return Document(
            collection=collection,
            id=doc_id,
            data=copy.deepcopy(stored.data),
            version=str(stored.version),
        )

    async def probe(self) -> None:
        return None

    async def get(self, collection: str, doc_id: str) -> Document | None:
        await self._pause()
        stored = self._collections.get(collection, {}).get(doc_id)
        if stored is None:
            return None
        return self._snapshot(collection, doc_id, stored)

    async def query(self, collection: str, filters: Sequence[Filter] = ()) -> list[Document]:
        """Return matching documents in insertion order."""
        await self._pause()
        docs = self._collections.get(collection, {})
        return [
            self._snapshot(collection, doc_id, stored)
            for doc_id, stored in docs.items()
            if matches_all(stored.data, filters)
        ]

    async def commit(self, writes: Sequence[Write]) -> dict[str, str]:
        applied = await self._apply(writes)
        return {doc_key(*key): doc.version for key, doc in applied.items()}

    async def _apply(self, writes: Sequence[Write]) -> dict[tuple[str, str], Document]:
        """Commit *writes* and return each written document as it was stored."""
        await self._pause()
        async with self._lock:
            staged = self._stage(writes)
            applied: dict[tuple[str, str], Document] = {}
            for (collection, doc_id), data in staged.items():
                stored = _StoredDocument(data=data, version=next(self._versions))
                self._collections.setdefault(collection, {})[doc_id] = stored
                applied[(collection, doc_id)] = self._snapshot(collection, doc_id, stored)
        _logger.debug("Committed %d write(s): %s", len(writes), ", ".join(doc_key(*key) for key in applied))
        for write in writes:
            self._feed.publish(ChangeEvent.for_write(write))
        return applied

    def _stage(self, writes: Sequence[Write]) -> dict[tuple[str, str], dict[str, Any]]:
        """Validate every precondition and compute the resulting documents."""
        staged: dict[tuple[str, str], dict[str, Any]] = {}
        for write in writes:
            key = (write.collection, write.doc_id)
            existing = self._collections.get(write.collection, {}).get(write.doc_id)
            current = staged[key] if key in staged else (copy.deepcopy(existing.data) if existing else None)

            if isinstance(write, Create):
                if current is not None:
                    raise ConflictError(
                        f"{doc_key(*key)} already exists",
                        collection=write.collection,
                        doc_id=write.doc_id,
                    )
                staged[key] = copy.deepcopy(dict(write.data))
                continue

            if current is None:
                raise NotFoundError(write.collection, write.doc_id)
            if (
                write.expected_version is not None
                and existing is not None
                and str(existing.version) != write.expected_version
            ):
                raise ConflictError(
                    f"{doc_key(*key)} changed since version {write.expected_version}",
                    collection=write.collection,
                    doc_id=write.doc_id,
                )
            current.update(copy.deepcopy(dict(write.fields)))
            for name in write.delete:
                current.pop(name, None)
            staged[key] = current
        return staged

    async def add(self, collection: str, data: Mapping[str, Any]) -> Document:
        doc_id = new_document_id()
        versions = await self.commit([Create(collection, doc_id, data)])
        return Document(
            collection=collection,
            id=doc_id,
            data=copy.deepcopy(dict(data)),
            version=versions[doc_key(collection, doc_id)],
        )

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        *,
        expected_version: str | None = None,
        delete: tuple[str, ...] = (),
    ) -> Document:
        applied = await self._apply(
            [Update(collection, doc_id, fields, expected_version=expected_version, delete=delete)]
        )
        return applied[(collection, doc_id)]

    def subscribe(self, collection: str, listener: ChangeListener) -> Callable[[], None]:
        return self._feed.subscribe(collection, listener)

    def document_count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))
