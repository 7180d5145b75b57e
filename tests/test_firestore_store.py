from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest

from campuspay._transport import _error_reason
from campuspay.exceptions import BackendUnavailableError, ConflictError, NotFoundError, StoreTransportError
from campuspay.store._codec import decode_fields, encode_value
from campuspay.store.base import ChangeEvent, Create, Filter, Update
from campuspay.store.firestore import FirestoreStore

_DB = "projects/campus/databases/(default)"


class _FakeTransport:
    """Records requests and replays scripted responses in order."""

    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)
        self.requests: list[tuple[str, str, Mapping[str, Any] | None]] = []

    @property
    def database_path(self) -> str:
        return _DB

    async def request(
        self,
        method: str,
        path: str,
        *,
        payload: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        self.requests.append((method, path, payload))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _http_error(status: int, reason: str = "") -> StoreTransportError:
    return StoreTransportError(f"HTTP {status}", status_code=status, path="/x", reason=reason)


class TestReachability:
    @pytest.mark.asyncio
    async def test_empty_database_is_reachable(self) -> None:
        transport = _FakeTransport([{"readTime": "2024-01-01T00:00:00Z"}])
        store = FirestoreStore(transport)

        await store.probe()

        method, path, payload = transport.requests[0]
        assert (method, path) == ("POST", ":runQuery")
        assert payload is not None
        assert payload["structuredQuery"]["limit"] == 1

    @pytest.mark.asyncio
    async def test_missing_database_is_unavailable(self) -> None:
        missing = StoreTransportError(
            "The database (default) does not exist for project wrong",
            status_code=404,
            path=":runQuery",
            reason="NOT_FOUND",
        )
        store = FirestoreStore(_FakeTransport(missing))
        with pytest.raises(BackendUnavailableError, match="does not exist"):
            await store.probe()

    @pytest.mark.asyncio
    async def test_server_error_means_unavailable(self) -> None:
        store = FirestoreStore(_FakeTransport(_http_error(500, "INTERNAL")))
        with pytest.raises(BackendUnavailableError):
            await store.probe()


@pytest.mark.asyncio
async def test_get_decodes_typed_fields_and_version() -> None:
    transport = _FakeTransport(
        {
            "name": f"{_DB}/documents/users/u1",
            "fields": {
                "name": {"stringValue": "Ana"},
                "walletBalance": {"doubleValue": 12.5},
                "createdAt": {"timestampValue": "2024-01-01T00:00:00.123456789Z"},
            },
            "updateTime": "2024-01-02T00:00:00.000001Z",
        }
    )
    store = FirestoreStore(transport)

    doc = await store.get("users", "u1")

    assert doc is not None
    assert doc.id == "u1"
    assert doc.version == "2024-01-02T00:00:00.000001Z"
    assert doc.data["walletBalance"] == Decimal("12.5")
    assert doc.data["createdAt"] == datetime(2024, 1, 1, 0, 0, 0, 123456, tzinfo=UTC)
    assert transport.requests[0][:2] == ("GET", "/users/u1")


@pytest.mark.asyncio
async def test_get_missing_returns_none() -> None:
    store = FirestoreStore(_FakeTransport(_http_error(404, "NOT_FOUND")))
    assert await store.get("users", "ghost") is None


@pytest.mark.asyncio
async def test_commit_sends_preconditions_and_returns_versions() -> None:
    transport = _FakeTransport(
        {
            "writeResults": [{"updateTime": "v-user"}, {"updateTime": "v-tx"}],
            "commitTime": "v-commit",
        }
    )
    store = FirestoreStore(transport)
    events: list[ChangeEvent] = []
    store.subscribe("users", events.append)

    versions = await store.commit(
        [
            Update("users", "u1", {"walletBalance": Decimal(210)}, expected_version="v-old"),
            Create("transactions", "t1", {"userId": "u1", "amount": Decimal(120)}),
        ]
    )

    assert versions == {"users/u1": "v-user", "transactions/t1": "v-tx"}
    method, path, payload = transport.requests[0]
    assert (method, path) == ("POST", ":commit")
    assert payload is not None
    update, create = payload["writes"]
    assert update["currentDocument"] == {"updateTime": "v-old"}
    assert update["updateMask"] == {"fieldPaths": ["walletBalance"]}
    assert update["update"]["name"] == f"{_DB}/documents/users/u1"
    assert update["update"]["fields"]["walletBalance"] == {"integerValue": "210"}
    assert create["currentDocument"] == {"exists": False}
    assert [event.doc_id for event in events] == ["u1"]


@pytest.mark.asyncio
async def test_commit_update_with_delete_lists_fields_in_mask() -> None:
    transport = _FakeTransport({"writeResults": [{}], "commitTime": "v1"})
    store = FirestoreStore(transport)

    versions = await store.commit([Update("scootyRentals", "s1", {"status": "available"}, delete=("currentRenterId",))])

    payload = transport.requests[0][2]
    assert payload is not None
    write = payload["writes"][0]
    assert write["updateMask"] == {"fieldPaths": ["status", "currentRenterId"]}
    assert write["currentDocument"] == {"exists": True}
    assert "currentRenterId" not in write["update"]["fields"]
    assert versions == {"scootyRentals/s1": "v1"}


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (_http_error(400, "FAILED_PRECONDITION"), ConflictError),
        (_http_error(409, "ALREADY_EXISTS"), ConflictError),
        (_http_error(404, "NOT_FOUND"), NotFoundError),
        (_http_error(500, "INTERNAL"), StoreTransportError),
    ],
)
@pytest.mark.asyncio
async def test_commit_maps_rejections(error: StoreTransportError, expected: type[Exception]) -> None:
    store = FirestoreStore(_FakeTransport(error))
    with pytest.raises(expected):
        await store.commit([Update("users", "u1", {"walletBalance": 1}, expected_version="v")])


@pytest.mark.asyncio
async def test_query_builds_composite_filter_and_skips_empty_rows() -> None:
    transport = _FakeTransport(
        [
            {"readTime": "t"},
            {
                "document": {
                    "name": f"{_DB}/documents/rideRequests/r1",
                    "fields": {"status": {"stringValue": "pending"}, "riderId": {"stringValue": "a"}},
                    "updateTime": "v1",
                }
            },
        ]
    )
    store = FirestoreStore(transport)

    docs = await store.query("rideRequests", [Filter("status", "==", "pending"), Filter("riderId", "!=", "b")])

    assert [doc.id for doc in docs] == ["r1"]
    payload = transport.requests[0][2]
    assert payload is not None
    where = payload["structuredQuery"]["where"]["compositeFilter"]
    assert where["op"] == "AND"
    assert [f["fieldFilter"]["op"] for f in where["filters"]] == ["EQUAL", "NOT_EQUAL"]


def test_codec_keeps_money_exact() -> None:
    assert encode_value(Decimal("330")) == {"integerValue": "330"}
    assert encode_value(Decimal("12.50")) == {"doubleValue": 12.5}
    assert decode_fields({"amount": {"doubleValue": 0.1}}) == {"amount": Decimal("0.1")}
    with pytest.raises(TypeError):
        encode_value(object())


def test_error_reason_reads_canonical_status() -> None:
    body = '[{"error": {"code": 400, "status": "FAILED_PRECONDITION"}}]'
    assert _error_reason(body) == "FAILED_PRECONDITION"
    assert _error_reason("not json") == ""


@pytest.mark.asyncio
async def test_update_event_carries_deleted_fields_as_none() -> None:
    transport = _FakeTransport({"writeResults": [{"updateTime": "v2"}]})
    store = FirestoreStore(transport)
    events: list[ChangeEvent] = []
    store.subscribe("scootyRentals", events.append)

    await store.commit(
        [Update("scootyRentals", "s1", {"status": "available"}, expected_version="v1", delete=("currentRenterId",))]
    )

    assert events[0].data == {"status": "available", "currentRenterId": None}
