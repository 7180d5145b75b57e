"""HTTP transport for the document store REST API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from campuspay._redact import redact_for_log
from campuspay.config import CampusConfig
from campuspay.exceptions import BackendUnavailableError, ConfigError, StoreTransportError

_logger = logging.getLogger(__name__)

#: Statuses that mean "this session may not use the durable store at all".
_UNAVAILABLE_STATUSES: frozenset[int] = frozenset({401, 403, 502, 503, 504})


class Transport(Protocol):
    """Structural transport interface used by :class:`~campuspay.store.firestore.FirestoreStore`.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    @property
    def database_path(self) -> str:
        """``projects/{project}/databases/{database}``."""
        ...

    async def request(
        self,
        method: str,
        path: str,
        *,
        payload: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any: ...


def _error_reason(text: str) -> str:
    """Pull the canonical status (``FAILED_PRECONDITION`` ...) out of an error body."""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return ""
    if isinstance(body, list) and body:
        body = body[0]
    if not isinstance(body, dict):
        return ""
    error = body.get("error")
    if isinstance(error, dict):
        return str(error.get("status") or "")
    return ""


class HttpTransport:
    """JSON-over-HTTP transport against ``{base_url}/{database_path}/documents``.

    Network failures, timeouts and auth rejections raise
    :class:`BackendUnavailableError`; any other non-2xx raises
    :class:`StoreTransportError`.
    """

    def __init__(self, config: CampusConfig, http_session: aiohttp.ClientSession) -> None:
        if not config.firestore_project_id:
            raise ConfigError("firestore_project_id is required for the durable store")
        self._config = config
        self._http = http_session
        self._database_path = f"projects/{config.firestore_project_id}/databases/{config.firestore_database}"
        self._root = f"{config.firestore_base_url.rstrip('/')}/{self._database_path}/documents"

    @property
    def database_path(self) -> str:
        return self._database_path

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json; charset=UTF-8"}
        if self._config.id_token:
            headers["authorization"] = f"Bearer {self._config.id_token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        payload: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send one request; *path* is appended to the documents root.

        ``/users/abc`` addresses a document, ``:commit`` and ``:runQuery``
        address the database-level methods.
        """
        url = f"{self._root}{path}"
        params = {"key": self._config.firestore_api_key} if self._config.firestore_api_key else None
        client_timeout = aiohttp.ClientTimeout(total=timeout if timeout is not None else self._config.request_timeout)

        _logger.debug("%s %s payload=%s", method, url, redact_for_log(payload))

        try:
            async with self._http.request(
                method,
                url,
                params=params,
                json=dict(payload) if payload is not None else None,
                headers=self._headers(),
                timeout=client_timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise BackendUnavailableError(f"{method} {path} failed: {exc!r}") from exc

        if status in _UNAVAILABLE_STATUSES:
            raise BackendUnavailableError(f"HTTP {status} from {path}: {text[:200]}")
        if not 200 <= status < 300:
            raise StoreTransportError(
                f"HTTP {status} from {path}: {text[:200]}",
                status_code=status,
                path=path,
                reason=_error_reason(text),
            )

        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise StoreTransportError(
                f"Invalid JSON from {path}: {text[:200]}",
                status_code=status,
                path=path,
            ) from exc
