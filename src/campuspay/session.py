"""Member-facing async session: one backend, one set of services."""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, TypeVar

import aiohttp

from campuspay._transport import HttpTransport
from campuspay.config import CampusConfig
from campuspay.exceptions import CampusPayError, NotAuthenticatedError
from campuspay.identity import IdentityProvider, LocalIdentityProvider
from campuspay.ledger import Ledger
from campuspay.models.identity import Identity
from campuspay.models.listing import ScootyListing
from campuspay.models.ride import RideRequest
from campuspay.models.transaction import Transaction
from campuspay.rentals import RentalBoard
from campuspay.rides import RideBoard
from campuspay.store.base import RIDE_REQUESTS, SCOOTY_RENTALS, TRANSACTIONS, USERS, DocumentStore
from campuspay.store.firestore import FirestoreStore
from campuspay.store.seed import seed_member_wallet
from campuspay.store.selector import BackendKind, BackendSelector
from campuspay.sync import Subscription, SyncLayer

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CampusSession:
    """Async session for one client of the campus wallet.

    Usage::

        provider = LocalIdentityProvider(Identity(uid="u1", email="ana@campus.edu"))
        async with CampusSession(CampusConfig.from_env(), provider) as session:
            await session.top_up(100)
            ok = await session.pay(30, "Cafeteria")

    Every helper acts as the identity the provider currently reports.
    Signed out, queries return empty results and mutations raise
    :class:`NotAuthenticatedError`.
    """

    def __init__(
        self,
        config: CampusConfig | None = None,
        identity_provider: IdentityProvider | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        remote_factory: Callable[[], DocumentStore] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or CampusConfig()
        self._identity_provider: IdentityProvider = identity_provider or LocalIdentityProvider()
        self._external_session = session is not None
        self._http_session = session
        self._remote_factory = remote_factory
        self._clock = clock
        self._selector: BackendSelector | None = None
        self._store: DocumentStore | None = None
        self._ledger: Ledger | None = None
        self._rides: RideBoard | None = None
        self._rentals: RentalBoard | None = None
        self._sync: SyncLayer | None = None
        self._remove_identity_listener: Callable[[], None] | None = None
        self._opened: set[str] = set()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> CampusSession:
        factory = self._remote_factory
        if factory is None and self._config.is_remote_configured:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            transport = HttpTransport(self._config, self._http_session)
            factory = functools.partial(FirestoreStore, transport, probe_timeout=self._config.probe_timeout)

        self._selector = BackendSelector(self._config, remote_factory=factory, clock=self._clock)
        try:
            store = await self._selector.select()
        except BaseException:
            await self._close_http()
            raise

        retries = self._config.conflict_retries
        self._store = store
        self._ledger = Ledger(store, conflict_retries=retries, clock=self._clock)
        self._rides = RideBoard(store, conflict_retries=retries, clock=self._clock)
        self._rentals = RentalBoard(store, self._ledger, conflict_retries=retries, clock=self._clock)
        self._sync = SyncLayer(store, poll_interval=self._config.sync_poll_interval)
        self._remove_identity_listener = self._identity_provider.add_listener(self._on_identity_changed)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._remove_identity_listener is not None:
            self._remove_identity_listener()
            self._remove_identity_listener = None
        if self._sync is not None:
            await self._sync.close()
        await self._close_http()

    async def _close_http(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def _on_identity_changed(self, identity: Identity | None) -> None:
        if self._sync is not None:
            self._sync.invalidate()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, value: T | None) -> T:
        if value is None:
            raise CampusPayError("Session not started. Use 'async with CampusSession(...) as session:'")
        return value

    @property
    def backend(self) -> BackendKind:
        return self._require(self._require(self._selector).kind)

    @property
    def ledger(self) -> Ledger:
        return self._require(self._ledger)

    @property
    def rides(self) -> RideBoard:
        return self._require(self._rides)

    @property
    def rentals(self) -> RentalBoard:
        return self._require(self._rentals)

    @property
    def sync(self) -> SyncLayer:
        return self._require(self._sync)

    @property
    def identity(self) -> Identity | None:
        return self._identity_provider.current()

    async def _member(self) -> Identity:
        """The signed-in member, with their account opened on first use."""
        identity = self._identity_provider.current()
        if identity is None:
            raise NotAuthenticatedError("Sign in first")
        if identity.uid not in self._opened:
            await self._open_account(identity)
            self._opened.add(identity.uid)
        return identity

    async def _open_account(self, identity: Identity) -> None:
        if self.backend == BackendKind.MEMORY and self._config.seed_sample_data:
            if await seed_member_wallet(self._require(self._store), identity, now=self._clock()):
                return
        await self.ledger.open_account(identity)

    async def _query(self, fetch: Callable[[Identity], Awaitable[list[T]]]) -> list[T]:
        if self._identity_provider.current() is None:
            return []
        return await fetch(await self._member())

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    async def balance(self) -> Decimal:
        if self._identity_provider.current() is None:
            return Decimal(0)
        member = await self._member()
        return await self.ledger.get_balance(member.uid)

    async def transactions(self) -> list[Transaction]:
        return await self._query(lambda member: self.ledger.history(member.uid))

    async def top_up(self, amount: Any) -> Transaction:
        member = await self._member()
        return await self.ledger.top_up(member.uid, amount)

    async def pay(self, amount: Any, description: str = "Payment") -> bool:
        member = await self._member()
        return await self.ledger.charge(member.uid, amount, description)

    # ------------------------------------------------------------------
    # Rides
    # ------------------------------------------------------------------

    async def request_ride(self, pickup: str, dropoff: str) -> RideRequest:
        member = await self._member()
        return await self.rides.request(member.uid, member.display_name, pickup, dropoff)

    async def offer_ride(self, request_id: str) -> None:
        member = await self._member()
        await self.rides.offer(request_id, member.uid, member.display_name)

    async def complete_ride(self, request_id: str) -> None:
        member = await self._member()
        await self.rides.complete(request_id, member.uid)

    async def cancel_ride(self, request_id: str) -> None:
        member = await self._member()
        await self.rides.cancel(request_id, member.uid)

    async def open_ride_requests(self) -> list[RideRequest]:
        return await self._query(lambda member: self.rides.open_requests(member.uid))

    async def my_rides(self) -> list[RideRequest]:
        return await self._query(lambda member: self.rides.rides_for(member.uid))

    async def my_drives(self) -> list[RideRequest]:
        return await self._query(lambda member: self.rides.drives_for(member.uid))

    # ------------------------------------------------------------------
    # Scooties
    # ------------------------------------------------------------------

    async def list_scooty(self, model: str, price_per_hour: Any) -> ScootyListing:
        member = await self._member()
        return await self.rentals.list_scooty(member.uid, member.display_name, model, price_per_hour)

    async def rent_scooty(self, listing_id: str, hours: Any) -> bool:
        member = await self._member()
        return await self.rentals.rent(listing_id, member.uid, member.display_name, hours)

    async def return_scooty(self, listing_id: str) -> None:
        member = await self._member()
        await self.rentals.return_item(listing_id, member.uid)

    async def withdraw_scooty(self, listing_id: str) -> None:
        member = await self._member()
        await self.rentals.withdraw(listing_id, member.uid)

    async def available_scooties(self) -> list[ScootyListing]:
        return await self._query(lambda member: self.rentals.available(member.uid))

    async def my_rentals(self) -> list[ScootyListing]:
        return await self._query(lambda member: self.rentals.rentals_for(member.uid))

    async def my_listed_scooties(self) -> list[ScootyListing]:
        return await self._query(lambda member: self.rentals.listings_for(member.uid))

    # ------------------------------------------------------------------
    # Live collections
    # ------------------------------------------------------------------

    async def _watch(
        self,
        collections: Sequence[str],
        fetch: Callable[[], Awaitable[T]],
        callback: Callable[[T], None],
    ) -> Subscription[T]:
        return await self.sync.watch(collections, fetch, callback)

    async def watch_balance(self, callback: Callable[[Decimal], None]) -> Subscription[Decimal]:
        return await self._watch([USERS], self.balance, callback)

    async def watch_transactions(self, callback: Callable[[list[Transaction]], None]) -> Subscription[list[Transaction]]:
        return await self._watch([TRANSACTIONS], self.transactions, callback)

    async def watch_open_ride_requests(
        self, callback: Callable[[list[RideRequest]], None]
    ) -> Subscription[list[RideRequest]]:
        return await self._watch([RIDE_REQUESTS], self.open_ride_requests, callback)

    async def watch_my_rides(self, callback: Callable[[list[RideRequest]], None]) -> Subscription[list[RideRequest]]:
        return await self._watch([RIDE_REQUESTS], self.my_rides, callback)

    async def watch_my_drives(self, callback: Callable[[list[RideRequest]], None]) -> Subscription[list[RideRequest]]:
        return await self._watch([RIDE_REQUESTS], self.my_drives, callback)

    async def watch_available_scooties(
        self, callback: Callable[[list[ScootyListing]], None]
    ) -> Subscription[list[ScootyListing]]:
        return await self._watch([SCOOTY_RENTALS], self.available_scooties, callback)

    async def watch_my_rentals(
        self, callback: Callable[[list[ScootyListing]], None]
    ) -> Subscription[list[ScootyListing]]:
        return await self._watch([SCOOTY_RENTALS], self.my_rentals, callback)

    async def watch_my_listed_scooties(
        self, callback: Callable[[list[ScootyListing]], None]
    ) -> Subscription[list[ScootyListing]]:
        return await self._watch([SCOOTY_RENTALS], self.my_listed_scooties, callback)
