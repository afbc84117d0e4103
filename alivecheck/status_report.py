"""
Status snapshot for UI observers.

The UI never reads storage or timers itself; it renders whatever snapshot
the controller hands it.  A snapshot carries the level, the countdown, and,
while EMERGENCY is active, the manual fallback calls plus any sync warning.
A failed emergency sync is always visible here; it is never reported as a
success.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from alivecheck.config import SwitchPolicy
from alivecheck.dispatch import fallback_actions_for
from alivecheck.models import FallbackAction, Profile, SafetyEpisode, SafetyLevel
from alivecheck.scheduler import (
    clamped_remaining,
    compute_deadline,
    ensure_utc,
    format_countdown,
)


class StatusSnapshot:
    """Everything a screen needs to render the switch."""

    def __init__(
        self,
        level: SafetyLevel,
        trigger_reason: str,
        entered_at: datetime,
        last_check_in_at: Optional[datetime],
        deadline: Optional[datetime],
        remaining: Optional[timedelta],
        countdown: str,
        dispatched: bool,
        sync_warning: str,
        fallback_actions: list[FallbackAction],
        generated_at: datetime,
    ) -> None:
        self.level = level
        self.trigger_reason = trigger_reason
        self.entered_at = entered_at
        self.last_check_in_at = last_check_in_at
        self.deadline = deadline
        self.remaining = remaining
        self.countdown = countdown
        self.dispatched = dispatched
        self.sync_warning = sync_warning
        self.fallback_actions = fallback_actions
        self.generated_at = generated_at

    @property
    def show_sync_warning(self) -> bool:
        return self.level == SafetyLevel.EMERGENCY and bool(self.sync_warning)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "trigger_reason": self.trigger_reason,
            "entered_at": self.entered_at.isoformat(),
            "last_check_in_at": (
                self.last_check_in_at.isoformat() if self.last_check_in_at else None
            ),
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "remaining_seconds": (
                int(self.remaining.total_seconds()) if self.remaining is not None else None
            ),
            "countdown": self.countdown,
            "dispatched": self.dispatched,
            "show_sync_warning": self.show_sync_warning,
            "sync_warning": self.sync_warning,
            "fallback_actions": [a.model_dump() for a in self.fallback_actions],
            "generated_at": self.generated_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"StatusSnapshot(level={self.level.value}, countdown='{self.countdown}')"


def build_status_snapshot(
    episode: SafetyEpisode,
    profile: Optional[Profile],
    policy: SwitchPolicy,
    now: datetime,
) -> StatusSnapshot:
    now = ensure_utc(now)
    deadline = remaining = last = None
    countdown = "--"
    fallbacks: list[FallbackAction] = []

    if profile is not None:
        last = profile.last_check_in_at
        deadline = compute_deadline(last, profile.check_in_interval_hours)
        remaining = clamped_remaining(now, last, profile.check_in_interval_hours)
        countdown = format_countdown(remaining)

    if episode.level == SafetyLevel.EMERGENCY:
        fallbacks = fallback_actions_for(profile, policy)

    return StatusSnapshot(
        level=episode.level,
        trigger_reason=episode.trigger_reason.value,
        entered_at=episode.entered_at,
        last_check_in_at=last,
        deadline=deadline,
        remaining=remaining,
        countdown=countdown,
        dispatched=episode.dispatched,
        sync_warning=episode.sync_warning,
        fallback_actions=fallbacks,
        generated_at=now,
    )
