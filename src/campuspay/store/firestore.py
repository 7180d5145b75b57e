"""Durable document store spoken over the Firestore REST API.

Conditional writes map onto ``currentDocument`` preconditions of
``documents:commit``: ``{"exists": false}`` for creates and
``{"updateTime": <version>}`` for versioned updates.  A commit request is
atomic on the server side, so the balance update and the transaction
append of a ledger operation land together or not at all.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from campuspay._transport import Transport
from campuspay.exceptions import (
    BackendUnavailableError,
    ConflictError,
    NotFoundError,
    StoreTransportError,
)
from campuspay.store._codec import decode_fields, encode_fields, encode_value
from campuspay.store.base import (
    USERS,
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

_PROBE_QUERY: dict[str, Any] = {"structuredQuery": {"from": [{"collectionId": USERS}], "limit": 1}}
_CONFLICT_REASONS: frozenset[str] = frozenset({"FAILED_PRECONDITION", "ALREADY_EXISTS", "ABORTED"})
_FILTER_OPS: dict[str, str] = {"==": "EQUAL", "!=": "NOT_EQUAL"}


class FirestoreStore:
    """Document store backed by the durable REST service."""

    def __init__(self, transport: Transport, *, probe_timeout: float | None = None) -> None:
        self._transport = transport
        self._probe_timeout = probe_timeout
        self._feed = ChangeFeed()

    def _name(self, collection: str, doc_id: str) -> str:
        return f"{self._transport.database_path}/documents/{collection}/{doc_id}"

    def _to_document(self, collection: str, raw: Mapping[str, Any]) -> Document:
        name = str(raw.get("name", ""))
        return Document(
            collection=collection,
            id=name.rsplit("/", 1)[-1],
            data=decode_fields(raw.get("fields") or {}),
            version=str(raw.get("updateTime", "")),
        )

    async def probe(self) -> None:
        """Fail fast if the store cannot serve this session.

        A one-row query only succeeds when the project and database exist;
        an empty database still answers ``[]``.
        """
        try:
            await self._transport.request(
                "POST", ":runQuery", payload=_PROBE_QUERY, timeout=self._probe_timeout
            )
        except StoreTransportError as exc:
            raise BackendUnavailableError(f"Store probe rejected: {exc}") from exc

    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            raw = await self._transport.request("GET", f"/{collection}/{doc_id}")
        except StoreTransportError as exc:
            if exc.status_code == 404:
                return None
            raise
        return self._to_document(collection, raw)

    async def query(self, collection: str, filters: Sequence[Filter] = ()) -> list[Document]:
        structured: dict[str, Any] = {"from": [{"collectionId": collection}]}
        field_filters = [
            {
                "fieldFilter": {
                    "field": {"fieldPath": f.field},
                    "op": _FILTER_OPS[f.op],
                    "value": encode_value(f.value),
                }
            }
            for f in filters
        ]
        if len(field_filters) == 1:
            structured["where"] = field_filters[0]
        elif field_filters:
            structured["where"] = {"compositeFilter": {"op": "AND", "filters": field_filters}}

        rows = await self._transport.request("POST", ":runQuery", payload={"structuredQuery": structured})
        documents: list[Document] = []
        for row in rows if isinstance(rows, list) else []:
            raw = row.get("document") if isinstance(row, dict) else None
            if not isinstance(raw, dict):
                continue
            doc = self._to_document(collection, raw)
            # Server-side inequality semantics differ slightly; re-check locally.
            if matches_all(doc.data, filters):
                documents.append(doc)
        return documents

    def _encode_write(self, write: Write) -> dict[str, Any]:
        name = self._name(write.collection, write.doc_id)
        if isinstance(write, Create):
            return {
                "update": {"name": name, "fields": encode_fields(write.data)},
                "currentDocument": {"exists": False},
            }
        precondition: dict[str, Any] = (
            {"updateTime": write.expected_version} if write.expected_version is not None else {"exists": True}
        )
        return {
            "update": {"name": name, "fields": encode_fields(write.fields)},
            "updateMask": {"fieldPaths": [*write.fields, *write.delete]},
            "currentDocument": precondition,
        }

    async def commit(self, writes: Sequence[Write]) -> dict[str, str]:
        payload = {"writes": [self._encode_write(w) for w in writes]}
        try:
            response = await self._transport.request("POST", ":commit", payload=payload)
        except StoreTransportError as exc:
            mapped = self._map_commit_error(exc, writes)
            if mapped is exc:
                raise
            _logger.debug("Commit rejected: %s", exc)
            raise mapped from exc

        results = response.get("writeResults") if isinstance(response, dict) else None
        results = results if isinstance(results, list) else []
        commit_time = str(response.get("commitTime", "")) if isinstance(response, dict) else ""
        versions: dict[str, str] = {}
        for index, write in enumerate(writes):
            result = results[index] if index < len(results) and isinstance(results[index], dict) else {}
            versions[doc_key(write.collection, write.doc_id)] = str(result.get("updateTime") or commit_time)

        for write in writes:
            self._feed.publish(ChangeEvent.for_write(write))
        return versions

    def _map_commit_error(self, exc: StoreTransportError, writes: Sequence[Write]) -> Exception:
        first = writes[0] if writes else None
        if exc.reason == "NOT_FOUND" or exc.status_code == 404:
            missing = next((w for w in writes if isinstance(w, Update)), first)
            if missing is not None:
                return NotFoundError(missing.collection, missing.doc_id)
        if exc.reason in _CONFLICT_REASONS or exc.status_code == 409:
            return ConflictError(
                f"Conditional write rejected: {exc.reason or exc.status_code}",
                collection=first.collection if first else "",
                doc_id=first.doc_id if first else "",
            )
        return exc

    async def add(self, collection: str, data: Mapping[str, Any]) -> Document:
        doc_id = new_document_id()
        versions = await self.commit([Create(collection, doc_id, data)])
        return Document(collection=collection, id=doc_id, data=dict(data), version=versions[doc_key(collection, doc_id)])

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        *,
        expected_version: str | None = None,
        delete: tuple[str, ...] = (),
    ) -> Document:
        await self.commit([Update(collection, doc_id, fields, expected_version=expected_version, delete=delete)])
        doc = await self.get(collection, doc_id)
        if doc is None:
            raise NotFoundError(collection, doc_id)
        return doc

    def subscribe(self, collection: str, listener: ChangeListener) -> Callable[[], None]:
        """Listen for writes made through this store instance.

        Writes by other clients are picked up by the sync layer's polling.
        """
        return self._feed.subscribe(collection, listener)
