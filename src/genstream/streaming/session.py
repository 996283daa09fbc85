"""
Stream session for genstream.

This module drives one generation stream from its byte source to its
sinks with:
- Ordered dispatch of classified events
- Stall monitoring owned by the session
- Salvage of buffered content on every exit path
- Exactly-once completion signalling
"""

import asyncio
import inspect
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .decoder import ChunkDecoder
from .events import ClassifiedEvent, EventKind
from .watchdog import Probe, StallWatchdog
from ..transport.base import ByteStreamSource
from ..utils.config import StreamSettings
from ..utils.errors import EmptyStreamError, GenstreamError, StreamError, TransportError
from ..utils.logging import bind_session, get_logger

logger = get_logger("genstream.session")


class SessionState(Enum):
    """Stream session states."""
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SessionMetrics:
    """Stream session metrics."""
    chunks_received: int = 0
    bytes_received: int = 0
    lines_received: int = 0
    events: Dict[str, int] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    def update_activity(self):
        """Update last activity timestamp."""
        self.last_activity = datetime.now(timezone.utc)

    def record(self, kind: EventKind) -> None:
        self.lines_received += 1
        self.events[kind.value] = self.events.get(kind.value, 0) + 1

    @property
    def duration_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time or datetime.now(timezone.utc)
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "chunks_received": self.chunks_received,
            "bytes_received": self.bytes_received,
            "lines_received": self.lines_received,
            "events": dict(self.events),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "duration_seconds": self.duration_seconds,
        }


class StreamSink:
    """Receiver of session callbacks.

    Override the methods you need; each may be a plain method or a
    coroutine function.
    """

    def on_delta(self, text: str) -> Any:
        pass

    def on_progress(self, stage: str, status: str, message: str) -> Any:
        pass

    def on_passthrough(self, payload: Any) -> Any:
        pass

    def on_error(self, error: StreamError) -> Any:
        pass

    def on_complete(self) -> Any:
        pass


class CallbackSink(StreamSink):
    """Sink built from individual callables."""

    def __init__(
        self,
        on_delta: Optional[Callable[[str], Any]] = None,
        on_progress: Optional[Callable[[str, str, str], Any]] = None,
        on_passthrough: Optional[Callable[[Any], Any]] = None,
        on_error: Optional[Callable[[StreamError], Any]] = None,
        on_complete: Optional[Callable[[], Any]] = None
    ):
        self._on_delta = on_delta
        self._on_progress = on_progress
        self._on_passthrough = on_passthrough
        self._on_error = on_error
        self._on_complete = on_complete

    def on_delta(self, text):
        if self._on_delta:
            return self._on_delta(text)

    def on_progress(self, stage, status, message):
        if self._on_progress:
            return self._on_progress(stage, status, message)

    def on_passthrough(self, payload):
        if self._on_passthrough:
            return self._on_passthrough(payload)

    def on_error(self, error):
        if self._on_error:
            return self._on_error(error)

    def on_complete(self):
        if self._on_complete:
            return self._on_complete()


class StreamSession:
    """One generation stream: byte source in, ordered callbacks out."""

    def __init__(
        self,
        source: ByteStreamSource,
        sinks: Optional[Iterable[StreamSink]] = None,
        settings: Optional[StreamSettings] = None,
        probe: Optional[Probe] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize stream session.

        Args:
            source: Byte source to read; closed by the session on exit
            sinks: Callback receivers, notified in registration order
            settings: Decoder and watchdog settings
            probe: Liveness probe used when the stream goes quiet
            session_id: Identifier for logs (generated if None)
            clock: Monotonic time source for the watchdog
        """
        self.id = session_id or uuid.uuid4().hex[:12]
        self.source = source
        self.sinks: List[StreamSink] = list(sinks or [])
        self.settings = settings or StreamSettings()

        self.state = SessionState.IDLE
        self.error: Optional[StreamError] = None
        self.cancelled = False
        self.completion_marker_seen = False
        self.metrics = SessionMetrics()

        self._decoder = ChunkDecoder(
            encoding=self.settings.encoding,
            max_line_length=self.settings.max_line_length
        )
        self.watchdog = StallWatchdog(
            threshold=self.settings.stall_threshold,
            check_interval=self.settings.check_interval,
            probe=probe,
            on_stall=self._on_stall,
            max_probe_failures=self.settings.max_probe_failures,
            clock=clock,
            name=self.id
        )

        self._content_seen = False
        self._complete_fired = False
        self._stall_error: Optional[TransportError] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.FAILED)

    def add_sink(self, sink: StreamSink) -> None:
        self.sinks.append(sink)

    def start(self) -> asyncio.Task:
        """Run the session in a background task."""
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name=f"stream-session-{self.id}")
        return self._task

    async def wait(self) -> SessionState:
        """Wait for a session started with start() to finish."""
        if self._task is None:
            raise GenstreamError(f"Session {self.id} was not started")
        await asyncio.shield(self._task)
        return self.state

    async def run(self) -> SessionState:
        """
        Read the source to its end and signal the outcome.

        Returns:
            The terminal state
        """
        # cancel() may land between start() and the task's first step
        if self.cancelled:
            return self.state

        if self.state is not SessionState.IDLE:
            raise GenstreamError(f"Session {self.id} already {self.state.value}")

        with bind_session(self.id):
            return await self._run()

    async def _run(self) -> SessionState:
        self.state = SessionState.ACTIVE
        self.metrics.start_time = datetime.now(timezone.utc)
        logger.info("session_started", session_id=self.id, source=self.source.name)

        error: Optional[StreamError] = None
        try:
            async with self._scope():
                await self.source.open()
                await self._read_loop()
        except asyncio.CancelledError:
            self.state = SessionState.COMPLETED
            self.metrics.end_time = datetime.now(timezone.utc)
            logger.info("session_cancelled", session_id=self.id, **self.metrics.to_dict())
            raise
        except StreamError as e:
            # An abort from the watchdog surfaces as the stall, not as the abort
            error = self._stall_error or e
        except Exception as e:
            logger.error("session_unexpected_error", session_id=self.id, error=str(e), exc_info=True)
            error = TransportError(f"Unexpected stream failure: {e}", cause=e)

        self.metrics.end_time = datetime.now(timezone.utc)

        if self.cancelled:
            self.state = SessionState.COMPLETED
            logger.info("session_cancelled", session_id=self.id, **self.metrics.to_dict())
            return self.state

        if error is None and not self._content_seen and not self.completion_marker_seen:
            error = EmptyStreamError()

        if error is not None:
            await self._fail(error)
        else:
            self.state = SessionState.COMPLETED
            logger.info(
                "session_completed",
                session_id=self.id,
                completion_marker=self.completion_marker_seen,
                **self.metrics.to_dict()
            )
            await self._fire_complete()

        return self.state

    async def cancel(self) -> None:
        """
        Stop the session without further callbacks.

        The pending read resolves because the source is aborted; buffered
        content is drained but not dispatched.
        """
        if self.is_terminal or self.cancelled:
            return

        self.cancelled = True
        logger.info("session_cancel_requested", session_id=self.id, state=self.state.value)

        if self.state is SessionState.IDLE:
            self.state = SessionState.COMPLETED
            await self.source.close()
            return

        self.source.abort()
        await self.watchdog.disarm()

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            await asyncio.shield(task)

    @asynccontextmanager
    async def _scope(self):
        """Arm the watchdog; always flush, disarm and close on the way out."""
        self.watchdog.arm()
        try:
            yield
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            await self.watchdog.disarm()
            tail = self._decoder.finish()
            if self.cancelled:
                if tail:
                    logger.debug("tail_discarded", session_id=self.id, events=len(tail))
            else:
                await self._dispatch_all(tail)
            await self.source.close()

    async def _read_loop(self) -> None:
        while True:
            chunk = await self.source.read()
            if not chunk:
                if self._stall_error is not None:
                    raise self._stall_error
                if not self.cancelled:
                    logger.debug("source_exhausted", session_id=self.id)
                return

            self.watchdog.touch()
            self.metrics.chunks_received += 1
            self.metrics.bytes_received += len(chunk)
            self.metrics.update_activity()

            await self._dispatch_all(self._decoder.feed(chunk))

            if self.completion_marker_seen:
                return

    async def _dispatch_all(self, events: List[ClassifiedEvent]) -> None:
        for event in events:
            await self._dispatch(event)

    async def _dispatch(self, event: ClassifiedEvent) -> None:
        if self.state is not SessionState.ACTIVE or self.cancelled:
            return

        self.watchdog.touch()
        self.metrics.record(event.kind)
        kind = event.kind

        if kind is EventKind.COMPLETION:
            if not self.completion_marker_seen:
                self.completion_marker_seen = True
                logger.debug("completion_marker_received", session_id=self.id)
            return

        if event.has_content:
            self._content_seen = True

        if kind is EventKind.DELTA and event.text:
            await self._notify("on_delta", event.text)
        elif kind is EventKind.PROGRESS:
            await self._notify("on_progress", event.stage, event.status, event.message)
        elif kind is EventKind.PASSTHROUGH:
            await self._notify("on_passthrough", event.payload)

    async def _notify(self, method: str, *args) -> None:
        for sink in list(self.sinks):
            try:
                result = getattr(sink, method)(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "sink_callback_error",
                    session_id=self.id,
                    callback=method,
                    error=str(e),
                    exc_info=True
                )

    async def _fail(self, error: StreamError) -> None:
        self.state = SessionState.FAILED
        self.error = error
        error.context.session_id = self.id
        error.context.component = "stream_session"
        logger.warning(
            "session_failed",
            session_id=self.id,
            error_kind=error.kind.value if error.kind else None,
            error=error.message,
            retryable=error.is_retryable,
            **self.metrics.to_dict()
        )
        await self._notify("on_error", error)
        await self._fire_complete()

    async def _fire_complete(self) -> None:
        if self._complete_fired:
            return
        self._complete_fired = True
        await self._notify("on_complete")

    def _on_stall(self) -> None:
        self._stall_error = TransportError(
            f"Stream stalled: no data for {self.watchdog.idle_seconds:.0f}s "
            f"and the backend did not answer liveness probes"
        )
        self.source.abort()


__all__ = [
    'SessionState',
    'SessionMetrics',
    'StreamSink',
    'CallbackSink',
    'StreamSession',
]
