"""Backend selection: durable store if reachable, in-memory store otherwise."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum

from campuspay.config import CampusConfig
from campuspay.exceptions import CampusPayError, StoreError
from campuspay.store.base import DocumentStore
from campuspay.store.memory import FallbackStore
from campuspay.store.seed import seed_sample_data

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BackendKind(StrEnum):
    REMOTE = "remote"
    MEMORY = "memory"


class BackendSelector:
    """Bind a session to exactly one store.

    The first :meth:`probe` decides: an unconfigured durable store, a
    probe error, or a probe slower than ``config.probe_timeout`` selects the
    in-memory :class:`FallbackStore` for the rest of the session.  There is
    no retry and no fail-back.
    """

    def __init__(
        self,
        config: CampusConfig,
        *,
        remote_factory: Callable[[], DocumentStore] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._remote_factory = remote_factory
        self._clock = clock
        self._lock = asyncio.Lock()
        self._kind: BackendKind | None = None
        self._store: DocumentStore | None = None
        self._fallback_reason: str | None = None

    @property
    def kind(self) -> BackendKind | None:
        """The selected backend, or ``None`` before the first probe."""
        return self._kind

    @property
    def fallback_reason(self) -> str | None:
        return self._fallback_reason

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            raise CampusPayError("No backend selected yet; await probe() or select() first")
        return self._store

    async def probe(self) -> BackendKind:
        """Decide the backend once; later calls return the same outcome."""
        async with self._lock:
            if self._kind is not None:
                return self._kind

            if not self._config.is_remote_configured or self._remote_factory is None:
                await self._use_memory("durable store not configured")
                return BackendKind.MEMORY

            remote = self._remote_factory()
            try:
                await asyncio.wait_for(remote.probe(), timeout=self._config.probe_timeout)
            except TimeoutError:
                await self._use_memory(f"probe timed out after {self._config.probe_timeout}s")
            except StoreError as exc:
                await self._use_memory(f"probe failed: {exc}")
            else:
                self._store = remote
                self._kind = BackendKind.REMOTE
                _logger.info("Using durable store")
            assert self._kind is not None  # noqa: S101
            return self._kind

    async def select(self) -> DocumentStore:
        """Return the bound store, probing on first access."""
        await self.probe()
        return self.store

    async def _use_memory(self, reason: str) -> None:
        store = FallbackStore(latency=self._config.store_latency)
        if self._config.seed_sample_data:
            await seed_sample_data(store, now=self._clock())
        self._store = store
        self._kind = BackendKind.MEMORY
        self._fallback_reason = reason
        _logger.warning("Durable store unavailable (%s); using in-memory store for this session", reason)
