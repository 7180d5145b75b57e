"""Identity provider seam.

The core does not authenticate anyone.  It asks an :class:`IdentityProvider`
who the active member is and treats ``None`` as "signed out".
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from campuspay.models.identity import Identity

_logger = logging.getLogger(__name__)

IdentityListener = Callable[[Identity | None], None]


class IdentityProvider(Protocol):
    def current(self) -> Identity | None: ...

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """Call *listener* on every sign-in/sign-out; returns an unsubscribe function."""
        ...


class LocalIdentityProvider:
    """In-process provider: whoever the host application signs in."""

    def __init__(self, identity: Identity | None = None) -> None:
        self._identity = identity
        self._listeners: list[IdentityListener] = []

    def current(self) -> Identity | None:
        return self._identity

    def sign_in(self, identity: Identity) -> None:
        self._identity = identity
        _logger.info("Signed in as %s", identity.uid)
        self._notify()

    def sign_out(self) -> None:
        if self._identity is None:
            return
        _logger.info("Signed out %s", self._identity.uid)
        self._identity = None
        self._notify()

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._identity)
            except Exception:
                _logger.debug("Identity listener failed", exc_info=True)
