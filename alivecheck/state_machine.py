"""
Safety State Machine.

Derives the current safety level from the silence since the last check-in,
and applies the user actions that override it.

**State machine:**

    SAFE -> ATTENTION -> EMERGENCY      (silence past deadline, then grace)
    SAFE | ATTENTION -> EMERGENCY       (manual panic, low-battery auto-panic)
    SAFE | ATTENTION -> SAFE            (check-in)
    EMERGENCY -> SAFE                   (explicit cancel only)

**Rules enforced in code:**

* EMERGENCY is sticky.  A tick never leaves it, and a plain check-in
  records the affirmation but keeps the level: guardians may already have
  been alerted, and only ``cancel_emergency()`` may stand them down.
* ``evaluate()`` never raises.  Without a profile (store unavailable) it
  holds the last known level.
* Re-entrant ticks at the same level keep the same episode, so the
  episode's ``dispatched`` flag survives repeated evaluation.

The machine owns no clock and no storage; the controller passes ``now`` and
the current profile in, and persists what comes back out.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from alivecheck.audit import SafetyEventLog, SafetyEventType
from alivecheck.config import DEFAULT_POLICY, SwitchPolicy
from alivecheck.models import Profile, SafetyEpisode, SafetyLevel, TriggerReason
from alivecheck.scheduler import classify_elapsed, elapsed_since, ensure_utc

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Valid level transitions
# ---------------------------------------------------------------------------

_VALID_TRANSITIONS: dict[SafetyLevel, set[SafetyLevel]] = {
    SafetyLevel.SAFE: {
        SafetyLevel.SAFE,
        SafetyLevel.ATTENTION,
        SafetyLevel.EMERGENCY,
    },
    SafetyLevel.ATTENTION: {SafetyLevel.SAFE, SafetyLevel.EMERGENCY},
    SafetyLevel.EMERGENCY: {SafetyLevel.SAFE},
}


class InvalidTransitionError(Exception):
    """Raised when a level transition is not permitted."""
    pass


class SafetyStateMachine:
    """Holds the active ``SafetyEpisode`` and moves it between levels.

    Every transition emits a ``LEVEL_CHANGED`` journal event.
    """

    def __init__(
        self,
        policy: SwitchPolicy = DEFAULT_POLICY,
        event_log: Optional[SafetyEventLog] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.policy = policy
        self._events = event_log if event_log is not None else SafetyEventLog()
        start = ensure_utc(now) if now is not None else None
        self.episode = (
            SafetyEpisode(entered_at=start) if start is not None else SafetyEpisode()
        )

    # -- properties --

    @property
    def level(self) -> SafetyLevel:
        return self.episode.level

    @property
    def needs_dispatch(self) -> bool:
        """True while the active EMERGENCY episode has not been handed off."""
        return self.episode.level == SafetyLevel.EMERGENCY and not self.episode.dispatched

    # -- helpers --

    def _validate_transition(self, target: SafetyLevel) -> None:
        allowed = _VALID_TRANSITIONS[self.episode.level]
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition from {self.episode.level.value} to {target.value}. "
                f"Allowed transitions: {sorted(s.value for s in allowed)}"
            )

    def _enter(
        self,
        target: SafetyLevel,
        reason: TriggerReason,
        now: datetime,
        profile_id: str = "",
    ) -> SafetyEpisode:
        self._validate_transition(target)
        previous = self.episode
        self.episode = SafetyEpisode(level=target, entered_at=now, trigger_reason=reason)

        self._events.record(
            SafetyEventType.LEVEL_CHANGED,
            profile_id=profile_id,
            episode_id=self.episode.episode_id,
            timestamp=now,
            from_level=previous.level.value,
            to_level=target.value,
            trigger_reason=reason.value,
        )
        if previous.level != target:
            logger.info(
                "Safety level %s -> %s (%s)",
                previous.level.value, target.value, reason.value,
            )
        return self.episode

    def derive_level(self, now: datetime, profile: Profile) -> SafetyLevel:
        """Level implied purely by elapsed silence, ignoring overrides."""
        elapsed = elapsed_since(now, profile.last_check_in_at)
        return classify_elapsed(
            elapsed,
            profile.check_in_interval_hours,
            self.policy.grace_margin_hours,
        )

    # -- evaluation --

    def evaluate(self, now: datetime, profile: Optional[Profile]) -> SafetyEpisode:
        """Re-evaluate the level for ``now``.

        Safe to call any number of times with any ``now``.  Returns the
        active episode.
        """
        try:
            now = ensure_utc(now)
            if profile is None:
                return self.episode
            if self.episode.level == SafetyLevel.EMERGENCY:
                return self.episode

            derived = self.derive_level(now, profile)
            current = self.episode.level
            if derived == current:
                return self.episode

            if derived == SafetyLevel.SAFE:
                # Leaving ATTENTION needs a check-in newer than the episode;
                # a clock that stepped backward does not count as one.
                if profile.last_check_in_at >= self.episode.entered_at:
                    return self._enter(
                        SafetyLevel.SAFE, TriggerReason.CHECK_IN_RESET, now, profile.profile_id
                    )
                return self.episode

            return self._enter(derived, TriggerReason.TIMEOUT, now, profile.profile_id)
        except Exception:
            logger.exception("Safety evaluation failed; holding %s", self.episode.level.value)
            return self.episode

    # -- user actions --

    def check_in(self, now: datetime, profile: Profile) -> Profile:
        """Record an affirmation and return the updated profile.

        ``last_check_in_at`` never moves backward.  The level becomes SAFE
        unless EMERGENCY is active, which only ``cancel_emergency()`` clears.
        """
        now = ensure_utc(now)
        updated = profile.model_copy(
            update={"last_check_in_at": max(profile.last_check_in_at, now)}
        )
        held = self.episode.level == SafetyLevel.EMERGENCY

        self._events.record(
            SafetyEventType.CHECK_IN,
            profile_id=profile.profile_id,
            episode_id=self.episode.episode_id,
            timestamp=now,
            level_held=held,
        )
        if held:
            logger.warning("Check-in recorded during EMERGENCY; level held until cancelled")
            return updated

        self._enter(SafetyLevel.SAFE, TriggerReason.CHECK_IN_RESET, now, profile.profile_id)
        return updated

    def panic(
        self,
        now: datetime,
        profile_id: str = "",
        reason: TriggerReason = TriggerReason.MANUAL_PANIC,
    ) -> SafetyEpisode:
        """Escalate straight to EMERGENCY, bypassing the grace margin.

        A panic while EMERGENCY is already active keeps the current episode,
        so it is not dispatched a second time.
        """
        now = ensure_utc(now)
        self._events.record(
            SafetyEventType.PANIC_RAISED,
            profile_id=profile_id,
            episode_id=self.episode.episode_id,
            timestamp=now,
            trigger_reason=reason.value,
            already_active=self.episode.level == SafetyLevel.EMERGENCY,
        )
        if self.episode.level == SafetyLevel.EMERGENCY:
            return self.episode
        return self._enter(SafetyLevel.EMERGENCY, reason, now, profile_id)

    def report_battery(
        self, now: datetime, percent: Optional[int], profile: Profile
    ) -> SafetyEpisode:
        """Auto-panic on critically low power, for profiles that opted in."""
        if percent is None or not profile.config.auto_panic_low_battery:
            return self.episode
        if percent > self.policy.low_battery_threshold_percent:
            return self.episode
        logger.warning(
            "Device power at %s%% (threshold %s%%); raising auto-panic",
            percent, self.policy.low_battery_threshold_percent,
        )
        return self.panic(now, profile.profile_id, TriggerReason.AUTO_LOW_BATTERY)

    def cancel_emergency(self, now: datetime, profile: Profile) -> Profile:
        """"I am safe now": leave EMERGENCY and check in.

        Raises:
            InvalidTransitionError: If EMERGENCY is not active.
        """
        if self.episode.level != SafetyLevel.EMERGENCY:
            raise InvalidTransitionError(
                f"Cannot cancel: level is {self.episode.level.value}, not EMERGENCY."
            )
        now = ensure_utc(now)
        cancelled = self.episode
        updated = profile.model_copy(
            update={"last_check_in_at": max(profile.last_check_in_at, now)}
        )
        self._events.record(
            SafetyEventType.EMERGENCY_CANCELLED,
            profile_id=profile.profile_id,
            episode_id=cancelled.episode_id,
            timestamp=now,
            was_dispatched=cancelled.dispatched,
            trigger_reason=cancelled.trigger_reason.value,
        )
        self._enter(SafetyLevel.SAFE, TriggerReason.CHECK_IN_RESET, now, profile.profile_id)
        return updated
