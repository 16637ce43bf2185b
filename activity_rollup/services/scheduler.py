"""In-process boundary ticker.

Calls EventAggregationService.close_elapsed() on a fixed period.  A tick
that fails is logged and the next tick tries again; because every boundary
is idempotent and the recovery sweep heals skipped buckets, a failed tick
never leaves aggregates in a bad state.
"""

from __future__ import annotations

import asyncio
import logging

from activity_rollup.foundation.clock import utc_now
from activity_rollup.services.processing import EventAggregationService

logger = logging.getLogger(__name__)


class BoundaryTicker:
    """Periodic driver for boundary closing."""

    def __init__(
        self,
        service: EventAggregationService,
        interval_seconds: float,
        log: logging.Logger | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._service = service
        self._interval = interval_seconds
        self._log = log or logger
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.ticks: int = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Run one tick.  Returns the number of boundary reports produced."""
        self.ticks += 1
        try:
            reports = await self._service.close_elapsed(utc_now())
        except Exception:
            self._log.exception("Boundary tick %d failed; retrying next tick", self.ticks)
            return 0
        return len(reports)

    async def run(self) -> None:
        """Tick until stop() is called."""
        self._log.info("Boundary ticker started (every %.1fs)", self._interval)
        while not self._stop.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        self._log.info("Boundary ticker stopped after %d tick(s)", self.ticks)

    def start(self) -> asyncio.Task:
        self._stop.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
