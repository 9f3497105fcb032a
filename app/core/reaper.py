"""Background purge of expired rate limit windows.

The reaper is the only thing that bounds store memory. It runs as an asyncio
task owned by the application lifespan; a failed cycle is logged and the
loop carries on with the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from app.adapters.rate_limit.base import AbstractWindowStore
from app.core.admission import epoch_ms

logger = logging.getLogger(__name__)


class WindowReaper:
    """Periodically call ``purge_expired`` on a window store."""

    def __init__(
        self,
        store: AbstractWindowStore,
        *,
        interval_seconds: float = 3600.0,
        grace_windows: int = 1,
        clock: Callable[[], int] = epoch_ms,
        stop_timeout_seconds: float = 5.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if grace_windows < 0:
            raise ValueError("grace_windows must be >= 0")

        self._store = store
        self._interval = interval_seconds
        self._grace_windows = grace_windows
        self._clock = clock
        self._stop_timeout = stop_timeout_seconds
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self.cycles = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def purge_once(self) -> int:
        """Run one purge cycle and return the number of windows removed."""
        removed = self._store.purge_expired(self._clock(), grace_windows=self._grace_windows)
        self.cycles += 1
        logger.info(
            "reaper.purged",
            extra={"removed": removed, "tracked_windows": len(self._store)},
        )
        return removed

    async def start(self) -> None:
        """Start the background purge loop (no-op when already running)."""
        if self._task is not None:
            logger.debug("reaper.already_running")
            return

        # Bound to the running loop; the app lifespan may run under a new loop.
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event))
        logger.info(
            "reaper.started",
            extra={"interval_s": self._interval, "grace_windows": self._grace_windows},
        )

    async def stop(self) -> None:
        """Signal the loop to exit, cancelling it if it does not stop in time."""
        if self._task is None or self._stop_event is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("reaper.stop_timeout")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("reaper.stopped", extra={"cycles": self.cycles, "failures": self.failures})

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                await asyncio.to_thread(self.purge_once)
            except Exception:
                self.failures += 1
                logger.exception("reaper.cycle_failed")
