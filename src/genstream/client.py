"""
Generation client for genstream.

Wires configuration, the aiohttp transport, the liveness probe and a
stream session together for one backend.
"""

import inspect
from typing import Any, Callable, Dict, Iterable, Optional

from .streaming.session import StreamSession, StreamSink
from .transport.http import HttpLivenessProbe, HttpStreamSource
from .utils.config import GenstreamConfig
from .utils.errors import AuthError
from .utils.logging import get_logger

logger = get_logger("genstream.client")


class GenerationClient:
    """Opens authenticated generation streams against one backend."""

    def __init__(
        self,
        config: Optional[GenstreamConfig] = None,
        on_auth_error: Optional[Callable[[AuthError], Any]] = None
    ):
        """
        Initialize client.

        Args:
            config: Configuration (defaults if None)
            on_auth_error: Called when a stream is rejected with 401;
                credential cleanup belongs to this hook
        """
        self.config = config or GenstreamConfig()
        self.on_auth_error = on_auth_error

    def url_for(self, path: str) -> str:
        """Absolute URL for a path relative to the configured base URL."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.config.transport.base_url}/{path.lstrip('/')}"

    def create_probe(self) -> HttpLivenessProbe:
        transport = self.config.transport
        return HttpLivenessProbe(
            self.url_for(transport.ping_path),
            token=transport.token,
            timeout=transport.probe_timeout
        )

    def create_session(
        self,
        path: str,
        sinks: Iterable[StreamSink],
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Any] = None,
        method: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> StreamSession:
        """
        Build a session for a streaming endpoint without starting it.

        Args:
            path: Endpoint path or absolute URL
            sinks: Callback receivers
            params: Query parameters
            body: JSON body (implies POST unless method is given)
            method: HTTP method
            session_id: Identifier for logs
        """
        transport = self.config.transport
        source = HttpStreamSource(
            self.url_for(path),
            method=method or ("POST" if body is not None else "GET"),
            params=params,
            json_body=body,
            token=transport.token,
            headers=transport.headers,
            connect_timeout=transport.connect_timeout
        )
        return StreamSession(
            source,
            sinks=sinks,
            settings=self.config.stream,
            probe=self.create_probe(),
            session_id=session_id
        )

    async def stream(self, path: str, sinks: Iterable[StreamSink], **kwargs) -> StreamSession:
        """
        Run a generation stream to completion.

        Returns:
            The finished session (inspect ``state`` and ``error``)
        """
        session = self.create_session(path, sinks, **kwargs)
        await session.run()

        if isinstance(session.error, AuthError) and self.on_auth_error is not None:
            logger.info("auth_rejected", session_id=session.id)
            result = self.on_auth_error(session.error)
            if inspect.isawaitable(result):
                await result

        return session


__all__ = ['GenerationClient']
