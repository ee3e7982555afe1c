"""
HTTP transport for the whereami backend.

``TransportEngine.send`` performs exactly one request and always resolves to
exactly one ``TransportOutcome``:

- 2xx status: success, raw response text as payload
- other status: ``HTTP <status> <body preview>``
- no answer within the timeout: ``timeout (<ms> ms)``, the request is aborted
- anything raised while dispatching: ``send error: <detail>``

Each call owns a ``PendingRequest`` holding its timer handle and a
``timed_out`` flag. Once the timer fires the call is settled as a timeout and
any later completion of the aborted request is discarded.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Set

import aiohttp
from yarl import URL

from .config import GatewayConfig
from .errors import GatewayError, HTTPStatusFailure, RequestTimeout, SendFailure

logger = logging.getLogger(__name__)

ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass
class TransportOutcome:
    ok: bool
    status: Optional[int] = None
    body: str = ""
    error: Optional[GatewayError] = None

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""

    @classmethod
    def success(cls, status: int, body: str) -> "TransportOutcome":
        return cls(ok=True, status=status, body=body)

    @classmethod
    def failure(cls, error: GatewayError, status: Optional[int] = None, body: str = "") -> "TransportOutcome":
        return cls(ok=False, status=status, body=body, error=error)


@dataclass(eq=False)
class PendingRequest:
    """State of one in-flight call: its timer token and whether the timer fired."""
    method: str
    url: str
    timeout_ms: int
    timer: Optional[asyncio.TimerHandle] = None
    timed_out: bool = False

    def release(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class TransportEngine:
    """Issues single HTTP requests against the configured backend."""

    def __init__(self, config: GatewayConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._pending: Set[PendingRequest] = set()

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def open(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # Deadlines are enforced per call by ``send``.
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        for pending in list(self._pending):
            pending.release()
        self._pending.clear()
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "TransportEngine":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def url_for(self, path: str) -> str:
        base = self.config.base_url or ""
        if not path.startswith('/'):
            path = '/' + path
        return base + path

    @staticmethod
    def encode_body(body: Any) -> Optional[str]:
        if body is None:
            return None
        if isinstance(body, str):
            return body
        return json.dumps(body, ensure_ascii=False)

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        timeout_ms: Optional[int] = None,
    ) -> TransportOutcome:
        method = (method or "").upper()
        timeout_ms = self.config.request_timeout_ms if timeout_ms is None else int(timeout_ms)

        if self.config.offline:
            return TransportOutcome.failure(SendFailure("client is in offline mode"))
        if method not in ALLOWED_METHODS:
            return TransportOutcome.failure(SendFailure(f"unsupported method {method or '<empty>'}"))
        try:
            data = self.encode_body(body)
        except (TypeError, ValueError) as exc:
            logger.warning("%s %s: body serialization failed: %s", method, path, exc)
            return TransportOutcome.failure(SendFailure(exc))

        loop = asyncio.get_running_loop()
        settled: asyncio.Future = loop.create_future()
        pending = PendingRequest(method=method, url=self.url_for(path), timeout_ms=timeout_ms)
        self._pending.add(pending)
        logger.debug("-> %s %s (timeout %d ms)", method, pending.url, timeout_ms)

        task = loop.create_task(self._dispatch(method, pending.url, data))

        def _on_timeout() -> None:
            pending.timed_out = True
            pending.timer = None
            self._pending.discard(pending)
            task.cancel()
            if not settled.done():
                logger.warning("%s %s timed out after %d ms", method, pending.url, timeout_ms)
                settled.set_result(TransportOutcome.failure(RequestTimeout(timeout_ms)))

        def _on_done(finished: asyncio.Task) -> None:
            if pending.timed_out:
                if not finished.cancelled():
                    finished.exception()
                logger.debug("%s %s: discarding completion after timeout", method, pending.url)
                return
            pending.release()
            self._pending.discard(pending)
            if settled.done():
                return
            if finished.cancelled():
                settled.set_result(TransportOutcome.failure(SendFailure("request cancelled")))
                return
            exc = finished.exception()
            if exc is not None:
                logger.warning("%s %s failed: %s", method, pending.url, exc)
                settled.set_result(TransportOutcome.failure(SendFailure(str(exc) or type(exc).__name__)))
                return
            settled.set_result(finished.result())

        pending.timer = loop.call_later(timeout_ms / 1000.0, _on_timeout)
        task.add_done_callback(_on_done)

        try:
            return await settled
        finally:
            if not task.done():
                task.cancel()
            pending.release()
            self._pending.discard(pending)

    async def _dispatch(self, method: str, url: str, data: Optional[str]) -> TransportOutcome:
        headers = {'Accept': 'application/json'}
        payload = None
        if data is not None and method in BODY_METHODS:
            headers['Content-Type'] = 'application/json'
            payload = data.encode('utf-8')
        session = await self.open()
        async with session.request(method, URL(url, encoded=True), data=payload, headers=headers) as response:
            text = await response.text(errors='replace')
            status = response.status
        if 200 <= status < 300:
            logger.debug("<- %s %s %d (%d bytes)", method, url, status, len(text))
            return TransportOutcome.success(status, text)
        error = HTTPStatusFailure(status, text)
        logger.warning("<- %s %s %s", method, url, error.message)
        return TransportOutcome.failure(error, status=status, body=text)


__all__ = [
    "ALLOWED_METHODS",
    "BODY_METHODS",
    "PendingRequest",
    "TransportEngine",
    "TransportOutcome",
]
