from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import pytest

from campuspay.config import CampusConfig
from campuspay.exceptions import BackendUnavailableError, CampusPayError
from campuspay.store.base import Filter
from campuspay.store.memory import FallbackStore
from campuspay.store.selector import BackendKind, BackendSelector

_REMOTE = CampusConfig(firestore_project_id="campus", firestore_api_key="AIza-test", probe_timeout=0.05)


def _clock() -> datetime:
    return datetime(2024, 1, 1, tzinfo=UTC)


class _RemoteStub(FallbackStore):
    """A reachable store whose probe can be made to fail or hang."""

    def __init__(self, *, fail: bool = False, hang: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.hang = hang
        self.probes = 0

    async def probe(self) -> None:
        self.probes += 1
        if self.hang:
            await asyncio.sleep(10)
        if self.fail:
            raise BackendUnavailableError("connection refused")


@pytest.mark.asyncio
async def test_unconfigured_selects_memory_without_calling_factory() -> None:
    calls: list[int] = []

    def _factory() -> FallbackStore:
        calls.append(1)
        return _RemoteStub()

    selector = BackendSelector(CampusConfig(), remote_factory=_factory, clock=_clock)

    assert await selector.probe() == BackendKind.MEMORY
    assert calls == []
    assert selector.fallback_reason == "durable store not configured"


@pytest.mark.asyncio
async def test_reachable_remote_is_bound() -> None:
    remote = _RemoteStub()
    selector = BackendSelector(_REMOTE, remote_factory=lambda: remote, clock=_clock)

    assert await selector.select() is remote
    assert selector.kind == BackendKind.REMOTE


@pytest.mark.asyncio
async def test_probe_failure_switches_once_and_for_good(caplog: pytest.LogCaptureFixture) -> None:
    remote = _RemoteStub(fail=True)
    selector = BackendSelector(_REMOTE, remote_factory=lambda: remote, clock=_clock)

    with caplog.at_level(logging.WARNING, logger="campuspay.store.selector"):
        first = await selector.select()
        remote.fail = False
        second = await selector.select()

    assert isinstance(first, FallbackStore)
    assert second is first
    assert remote.probes == 1
    assert selector.kind == BackendKind.MEMORY
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 1


@pytest.mark.asyncio
async def test_slow_probe_times_out_to_memory() -> None:
    selector = BackendSelector(_REMOTE, remote_factory=lambda: _RemoteStub(hang=True), clock=_clock)

    assert await selector.probe() == BackendKind.MEMORY
    assert selector.fallback_reason is not None
    assert "timed out" in selector.fallback_reason


@pytest.mark.asyncio
async def test_concurrent_first_access_probes_once() -> None:
    remote = _RemoteStub()
    selector = BackendSelector(_REMOTE, remote_factory=lambda: remote, clock=_clock)

    stores = await asyncio.gather(selector.select(), selector.select(), selector.select())

    assert all(store is remote for store in stores)
    assert remote.probes == 1


@pytest.mark.asyncio
async def test_fallback_is_seeded_with_sample_community() -> None:
    selector = BackendSelector(CampusConfig(), clock=_clock)
    store = await selector.select()

    pending = await store.query("rideRequests", [Filter("status", "==", "pending")])
    scooties = await store.query("scootyRentals", [Filter("status", "==", "available")])

    assert {(doc.data["pickup"], doc.data["dropoff"]) for doc in pending} == {
        ("University Main Gate", "Engineering Block"),
        ("Girls Hostel", "Library"),
    }
    assert sorted(doc.data["model"] for doc in scooties) == ["Honda Activa", "Suzuki Access", "TVS Jupiter"]


@pytest.mark.asyncio
async def test_seeding_can_be_disabled() -> None:
    selector = BackendSelector(CampusConfig(seed_sample_data=False), clock=_clock)
    store = await selector.select()
    assert await store.query("scootyRentals") == []


def test_store_before_selection_raises() -> None:
    selector = BackendSelector(CampusConfig())
    with pytest.raises(CampusPayError):
        _ = selector.store
