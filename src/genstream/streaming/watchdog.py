"""
Stall watchdog for genstream.

Monitors stream inactivity. Long silences are normal while a large model
is thinking, so the watchdog never fails a session by itself: it logs,
probes the backend for liveness, and only asks for the source to be
cancelled after repeated decisive probe failures.
"""

import asyncio
import inspect
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..utils.logging import get_logger

logger = get_logger("genstream.watchdog")


class ProbeOutcome(Enum):
    """Result of a liveness probe."""
    ALIVE = "alive"                # backend answered
    INCONCLUSIVE = "inconclusive"  # probe timed out; backend may just be slow
    UNREACHABLE = "unreachable"    # connection could not be made


Probe = Callable[[], Awaitable[ProbeOutcome]]


class StallWatchdog:
    """Inactivity monitor owned by exactly one stream session."""

    def __init__(
        self,
        threshold: float = 180.0,
        check_interval: float = 5.0,
        probe: Optional[Probe] = None,
        on_stall: Optional[Callable[[], Any]] = None,
        max_probe_failures: int = 2,
        clock: Callable[[], float] = time.monotonic,
        name: str = "stream"
    ):
        """
        Initialize watchdog.

        Args:
            threshold: Seconds of silence before probing
            check_interval: Seconds between inactivity checks
            probe: Awaitable liveness probe
            on_stall: Called once when cancellation is requested
            max_probe_failures: Consecutive UNREACHABLE probes before cancelling
            clock: Monotonic time source
            name: Identifier used in log events
        """
        self.threshold = threshold
        self.check_interval = check_interval
        self.probe = probe
        self.on_stall = on_stall
        self.max_probe_failures = max_probe_failures
        self.clock = clock
        self.name = name

        self.last_activity = clock()
        self.tripped = False
        self.stall_count = 0
        self.probe_count = 0
        self._probe_failures = 0
        self._last_probe: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def idle_seconds(self) -> float:
        return self.clock() - self.last_activity

    def touch(self) -> None:
        """Record activity."""
        self.last_activity = self.clock()
        self._probe_failures = 0

    def arm(self) -> None:
        """Reset activity and start the check loop if it is not running."""
        self.touch()
        if not self.armed and not self.tripped:
            self._task = asyncio.create_task(self._run(), name=f"watchdog-{self.name}")

    async def disarm(self) -> None:
        """Stop the check loop and wait for it to exit."""
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while not self.tripped:
            await asyncio.sleep(self.check_interval)
            await self.check()

    async def check(self) -> None:
        """Evaluate inactivity once; probe and escalate if needed."""
        if self.tripped:
            return

        now = self.clock()
        reference = self.last_activity
        if self._last_probe is not None:
            reference = max(reference, self._last_probe)
        if now - reference <= self.threshold:
            return

        self._last_probe = now
        self.stall_count += 1
        logger.warning(
            "stream_stalled",
            stream=self.name,
            idle_seconds=round(now - self.last_activity, 1),
            threshold=self.threshold
        )

        if self.probe is None:
            return

        outcome = await self._run_probe()
        if outcome is ProbeOutcome.ALIVE:
            self._probe_failures = 0
            logger.info("liveness_probe_ok", stream=self.name)
        elif outcome is ProbeOutcome.INCONCLUSIVE:
            logger.warning("liveness_probe_inconclusive", stream=self.name)
        else:
            self._probe_failures += 1
            logger.warning(
                "liveness_probe_failed",
                stream=self.name,
                failures=self._probe_failures,
                max_failures=self.max_probe_failures
            )
            if self._probe_failures >= self.max_probe_failures:
                await self._trip()

    async def _run_probe(self) -> ProbeOutcome:
        self.probe_count += 1
        try:
            return await self.probe()
        except Exception as e:
            logger.error("liveness_probe_error", stream=self.name, error=str(e))
            return ProbeOutcome.INCONCLUSIVE

    async def _trip(self) -> None:
        self.tripped = True
        logger.error(
            "stream_cancel_requested",
            stream=self.name,
            idle_seconds=round(self.idle_seconds, 1)
        )
        if self.on_stall is None:
            return
        try:
            result = self.on_stall()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("stall_callback_error", stream=self.name, error=str(e))


__all__ = ['StallWatchdog', 'ProbeOutcome', 'Probe']
