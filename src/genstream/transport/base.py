"""Byte stream sources feeding a stream session"""

import asyncio
import enum
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, AsyncIterable, Dict, Iterable, Optional, Union

from ..utils.logging import get_logger
from ..utils.errors import StreamError, TransportError

logger = get_logger("genstream.transport")


class SourceState(enum.Enum):
    """Lifecycle state of a byte source"""
    IDLE = "idle"
    OPEN = "open"
    CLOSED = "closed"
    ERROR = "error"


class ByteStreamSource(ABC):
    """Abstract base class for byte producing response bodies

    ``read()`` returns ``b""`` once the body is exhausted or the source has
    been closed. ``abort()`` wakes a pending ``open()`` or ``read()`` at once; failures
    surface as :class:`StreamError` subclasses.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or f"{self.__class__.__name__}_{uuid.uuid4().hex[:8]}"
        self.state = SourceState.IDLE
        self._closed = asyncio.Event()
        self._stats: Dict[str, Any] = {
            "bytes_read": 0,
            "chunks_read": 0,
            "opened_at": None,
            "closed_at": None
        }

    @abstractmethod
    async def _open(self) -> None:
        """Open the underlying body"""

    @abstractmethod
    async def _read_chunk(self) -> bytes:
        """Read the next buffer; ``b""`` when exhausted"""

    @abstractmethod
    async def _close(self) -> None:
        """Release the underlying body"""

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    async def _until_aborted(self, coro) -> asyncio.Future:
        """Run ``coro`` until it finishes or ``abort()`` fires

        Returns the finished task; it is cancelled if the abort won.
        """
        work = asyncio.ensure_future(coro)
        if self.closed:
            work.cancel()
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({work, closed_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_task.cancel()
            if not work.done():
                work.cancel()
            await asyncio.gather(work, return_exceptions=True)
        return work

    async def open(self) -> None:
        """Open the source"""
        if self.state != SourceState.IDLE:
            raise TransportError(f"Cannot open source {self.name} in state {self.state.value}")

        try:
            opening = await self._until_aborted(self._open())
            if opening.cancelled():
                raise TransportError(f"Opening {self.name} was aborted")
            opening.result()
        except StreamError:
            self.state = SourceState.ERROR
            raise
        except Exception as e:
            self.state = SourceState.ERROR
            raise TransportError(f"Failed to open {self.name}: {e}", cause=e) from e

        self.state = SourceState.OPEN
        self._stats["opened_at"] = datetime.now(timezone.utc).isoformat()
        logger.debug("source_opened", source=self.name)

    async def read(self) -> bytes:
        """Read the next chunk, racing the read against ``abort()``"""
        if self.closed or self.state != SourceState.OPEN:
            return b""

        read_task = await self._until_aborted(self._read_chunk())
        if read_task.cancelled():
            return b""

        try:
            chunk = read_task.result()
        except StreamError:
            self.state = SourceState.ERROR
            raise
        except Exception as e:
            self.state = SourceState.ERROR
            raise TransportError(f"Read failed on {self.name}: {e}", cause=e) from e

        self._stats["chunks_read"] += 1
        self._stats["bytes_read"] += len(chunk)
        return chunk

    def abort(self) -> None:
        """Wake any pending open or read; subsequent reads return ``b""``"""
        self._closed.set()

    async def close(self) -> None:
        """Abort and release the source; safe to call more than once"""
        if self.state == SourceState.CLOSED:
            return
        self.abort()
        try:
            await self._close()
        except Exception as e:
            logger.warning("source_close_error", source=self.name, error=str(e))
        self.state = SourceState.CLOSED
        self._stats["closed_at"] = datetime.now(timezone.utc).isoformat()
        logger.debug("source_closed", source=self.name, **{
            k: v for k, v in self._stats.items() if k in ("bytes_read", "chunks_read")
        })


class IterableSource(ByteStreamSource):
    """Source over in-memory chunks or an async iterator of chunks

    Exception instances in ``chunks`` are raised when reached, which
    simulates an I/O failure part way through a body.
    """

    def __init__(
        self,
        chunks: Union[Iterable[Union[bytes, BaseException]], AsyncIterable[bytes]],
        delay: float = 0.0,
        name: Optional[str] = None
    ):
        super().__init__(name)
        self._chunks = chunks
        self.delay = delay
        self._iterator: Any = None
        self._is_async = hasattr(chunks, "__aiter__")

    async def _open(self) -> None:
        if self._is_async:
            self._iterator = self._chunks.__aiter__()
        else:
            self._iterator = iter(self._chunks)

    async def _read_chunk(self) -> bytes:
        if self.delay:
            await asyncio.sleep(self.delay)
        while True:
            try:
                if self._is_async:
                    item = await self._iterator.__anext__()
                else:
                    item = next(self._iterator)
            except (StopIteration, StopAsyncIteration):
                return b""

            if isinstance(item, BaseException):
                raise item
            # An empty buffer would read as end of body
            if item:
                return item

    async def _close(self) -> None:
        aclose = getattr(self._iterator, "aclose", None)
        if aclose is not None:
            await aclose()


__all__ = ['SourceState', 'ByteStreamSource', 'IterableSource']
