"""Thin timer driver around ``SafetyController.evaluate``."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Callable, Optional

from alivecheck.controller import SafetyController
from alivecheck.models import SafetyEpisode

logger = logging.getLogger(__name__)


class TickDriver:
    """Calls ``controller.evaluate()`` every ``interval_seconds`` while running.

    ``clock`` supplies the ``now`` handed to each evaluation; without one the
    controller reads its own clock.  The driver holds no state of its own;
    tests call ``evaluate(now)`` directly instead of waiting on it.
    """

    def __init__(
        self,
        controller: SafetyController,
        interval_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.controller = controller
        self._clock = clock
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else controller.policy.tick_interval_seconds
        )
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> SafetyEpisode:
        self.ticks += 1
        now = self._clock() if self._clock is not None else None
        return await self.controller.evaluate(now)

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        """Start ticking on the running event loop.  Idempotent."""
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.debug("Tick driver started (every %ss)", self.interval_seconds)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.debug("Tick driver stopped after %d ticks", self.ticks)
