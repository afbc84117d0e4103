"""
Wake Trigger adapter.

The OS notifies us when the device is unlocked.  During the morning window,
if the user has not checked in yet that day, the switch is re-evaluated so
an overdue check-in surfaces even when the app was in the background.  The
trigger fires at most once per calendar day; extra unlocks are ignored.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Optional

from alivecheck.controller import SafetyController

logger = logging.getLogger(__name__)


class WakeTrigger:
    def __init__(self, controller: SafetyController) -> None:
        self.controller = controller
        self._last_fired: Optional[date] = None

    def in_window(self, now: datetime) -> bool:
        policy = self.controller.policy
        return policy.wake_window_start_hour <= now.hour <= policy.wake_window_end_hour

    def qualifies(self, now: datetime) -> bool:
        """Whether an unlock at ``now`` should re-evaluate the switch.

        ``now`` is read in its own timezone; naive values are taken as UTC.
        """
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if not self.in_window(now):
            return False
        if self._last_fired == now.date():
            return False
        profile = self.controller.profile
        if profile is None:
            return False
        last = profile.last_check_in_at.astimezone(now.tzinfo)
        return last.date() != now.date()

    async def on_unlock(self, now: Optional[datetime] = None) -> bool:
        """Handle one unlock event.  Returns True if it evaluated the switch."""
        now = now if now is not None else datetime.now(timezone.utc).astimezone()
        if self.controller.profile is None:
            # Populate the cached profile from the store before deciding.
            await self.controller.evaluate(now)
        if not self.qualifies(now):
            return False
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        self._last_fired = now.date()
        episode = await self.controller.evaluate(now)
        logger.info("Morning unlock evaluation: %s", episode.level.value)
        return True
