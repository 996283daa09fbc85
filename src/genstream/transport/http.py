"""HTTP transport for generation streams, built on aiohttp"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from .base import ByteStreamSource
from ..streaming.watchdog import ProbeOutcome
from ..utils.logging import get_logger
from ..utils.errors import AuthError, TransportError

logger = get_logger("genstream.transport.http")

STREAM_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    # Ask reverse proxies not to buffer the body
    "X-Accel-Buffering": "no",
}


def auth_headers(token: Optional[str]) -> Dict[str, str]:
    """Bearer authorization header, empty when no token is set"""
    return {"Authorization": f"Bearer {token}"} if token else {}


class HttpStreamSource(ByteStreamSource):
    """Response body of an authenticated streaming HTTP request

    No total timeout is applied: generations may legitimately stay silent
    for minutes, and inactivity is the watchdog's concern.
    """

    def __init__(
        self,
        url: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
        connect_timeout: float = 30.0,
        name: Optional[str] = None
    ):
        super().__init__(name or f"http:{url}")
        self.url = url
        self.method = method.upper()
        self.params = params
        self.json_body = json_body
        self.token = token
        self.headers = {**STREAM_HEADERS, **(headers or {}), **auth_headers(token)}
        self.connect_timeout = connect_timeout
        self._session = session
        self._owns_session = session is None
        self._response: Optional[aiohttp.ClientResponse] = None

    @property
    def status(self) -> Optional[int]:
        return self._response.status if self._response is not None else None

    async def _open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.connect_timeout)
            )

        logger.info("stream_request", method=self.method, url=self.url)
        try:
            self._response = await self._session.request(
                self.method,
                self.url,
                params=self.params,
                json=self.json_body,
                headers=self.headers,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Request to {self.url} failed: {e}", cause=e) from e

        status = self._response.status
        logger.debug("stream_response", status=status, content_type=self._response.content_type)
        if status == 401:
            body = await self._error_body()
            raise AuthError(f"HTTP 401: {body}" if body else None)
        if status >= 400:
            body = await self._error_body()
            raise TransportError(f"HTTP {status}: {body}", status=status)

    async def _error_body(self) -> str:
        try:
            return (await self._response.text())[:200]
        except (aiohttp.ClientError, UnicodeDecodeError):
            return ""

    async def _read_chunk(self) -> bytes:
        try:
            return await self._response.content.readany()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Stream read failed: {e}", cause=e) from e

    async def _close(self) -> None:
        if self._response is not None:
            self._response.release()
            self._response = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


class HttpLivenessProbe:
    """Lightweight authenticated GET used by the stall watchdog"""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._session = session

    async def __call__(self) -> ProbeOutcome:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            if self._session is not None:
                return await self._ping(self._session, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._ping(session, timeout)
        except asyncio.TimeoutError:
            logger.debug("probe_timeout", url=self.url, timeout=self.timeout)
            return ProbeOutcome.INCONCLUSIVE
        except aiohttp.ClientError as e:
            logger.debug("probe_unreachable", url=self.url, error=str(e))
            return ProbeOutcome.UNREACHABLE

    async def _ping(self, session: aiohttp.ClientSession, timeout: aiohttp.ClientTimeout) -> ProbeOutcome:
        async with session.get(self.url, headers=auth_headers(self.token), timeout=timeout) as response:
            # Any status proves the backend is reachable
            logger.debug("probe_response", url=self.url, status=response.status)
            return ProbeOutcome.ALIVE


__all__ = ['HttpStreamSource', 'HttpLivenessProbe', 'STREAM_HEADERS', 'auth_headers']
