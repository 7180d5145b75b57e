"""Live collections: re-query on change and push snapshots to observers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Generic, TypeVar

from campuspay.store.base import ChangeEvent, DocumentStore

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET: Any = object()


class Subscription(Generic[T]):
    """One observer of a live collection.

    Snapshots are produced by ``fetch`` and handed to ``callback`` only when
    they differ from the last one delivered.  Closing is idempotent and
    never touches stored data; a refresh in flight is cancelled, a mutation
    in flight is not affected.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        callback: Callable[[T], None],
        *,
        on_close: Callable[[Subscription[Any]], None] | None = None,
    ) -> None:
        self._fetch = fetch
        self._callback = callback
        self._on_close = on_close
        self._unsubscribers: list[Callable[[], None]] = []
        self._last: Any = _UNSET
        self._pending: asyncio.Task[None] | None = None
        self._refresh_lock = asyncio.Lock()
        self._dirty = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def latest(self) -> T | None:
        """Last snapshot delivered, or ``None`` before the first one."""
        return None if self._last is _UNSET else self._last

    def _attach(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribers.append(unsubscribe)

    async def refresh(self) -> bool:
        """Fetch now; returns ``True`` if a new snapshot was delivered."""
        async with self._refresh_lock:
            if self._closed:
                return False
            snapshot = await self._fetch()
            if self._closed or (self._last is not _UNSET and snapshot == self._last):
                return False
            self._last = snapshot
            try:
                self._callback(snapshot)
            except Exception:
                _logger.debug("Snapshot callback failed", exc_info=True)
            return True

    def schedule(self) -> None:
        """Request a refresh; coalesces with one already pending."""
        if self._closed:
            return
        if self._pending is not None and not self._pending.done():
            self._dirty = True
            return
        self._pending = asyncio.get_running_loop().create_task(self._refresh_until_clean())

    def _on_change(self, event: ChangeEvent) -> None:
        self.schedule()

    async def _refresh_until_clean(self) -> None:
        while not self._closed:
            self._dirty = False
            try:
                await self.refresh()
            except Exception:
                _logger.warning("Live collection refresh failed", exc_info=True)
            if not self._dirty:
                return

    async def settled(self) -> None:
        """Wait until no refresh is pending."""
        while self._pending is not None and not self._pending.done():
            with contextlib.suppress(asyncio.CancelledError):
                await self._pending

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        if self._on_close is not None:
            self._on_close(self)

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()


class SyncLayer:
    """Turns store change events (and optional polling) into snapshot pushes.

    Parameters
    ----------
    store : DocumentStore
        Store whose change feed drives refreshes.
    poll_interval : float
        Seconds between forced refreshes of every subscription, for
        changes made by other clients.  ``0`` disables polling.
    """

    def __init__(self, store: DocumentStore, *, poll_interval: float = 0.0) -> None:
        self._store = store
        self._poll_interval = poll_interval
        self._subscriptions: set[Subscription[Any]] = set()
        self._poll_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def watch(
        self,
        collections: str | Sequence[str],
        fetch: Callable[[], Awaitable[T]],
        callback: Callable[[T], None],
    ) -> Subscription[T]:
        """Observe *collections*; the first snapshot is delivered before returning."""
        if self._closed:
            raise RuntimeError("SyncLayer is closed")
        names = [collections] if isinstance(collections, str) else list(collections)
        subscription: Subscription[T] = Subscription(fetch, callback, on_close=self._subscriptions.discard)
        for name in names:
            subscription._attach(self._store.subscribe(name, subscription._on_change))
        self._subscriptions.add(subscription)
        try:
            await subscription.refresh()
        except BaseException:
            subscription.close()
            raise
        self._ensure_polling()
        return subscription

    def invalidate(self) -> None:
        """Schedule a refresh of every subscription (e.g. after sign-in/out)."""
        for subscription in list(self._subscriptions):
            subscription.schedule()

    async def settled(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.settled()

    def _ensure_polling(self) -> None:
        if self._poll_interval <= 0 or self._poll_task is not None:
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll())

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self.invalidate()

    async def close(self) -> None:
        self._closed = True
        for subscription in list(self._subscriptions):
            subscription.close()
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
