"""
Emergency Dispatch Coordinator.

On entry to EMERGENCY, gathers whatever context it can (position, device
power) and hands one payload to the sync channel.

**Guarantees:**

* Exactly one hand-off attempt per episode.  Calling ``dispatch`` again on
  an episode whose ``dispatched`` flag is set is a no-op.
* Never blocks indefinitely.  Sensor reads and the hand-off are each bounded
  by a policy timeout; a missing position or power reading never prevents
  the dispatch.
* A failed hand-off is reported as a warning.  It does not leave EMERGENCY,
  and the manual fallback actions are always returned.

Retrying a failed hand-off is the channel's responsibility, not this
coordinator's.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from alivecheck.audit import SafetyEventLog, SafetyEventType
from alivecheck.capabilities import BatteryProvider, LocationProvider
from alivecheck.config import DEFAULT_POLICY, SwitchPolicy
from alivecheck.content import ContentProvider, fetch_emergency_message
from alivecheck.models import (
    DispatchPayload,
    FallbackAction,
    Location,
    Profile,
    SafetyEpisode,
    SafetyLevel,
    utcnow,
)
from alivecheck.scheduler import ensure_utc
from alivecheck.sync import SyncChannel

logger = logging.getLogger(__name__)


class DispatchResult:
    """Outcome of one ``dispatch`` call."""

    def __init__(
        self,
        episode_id: str,
        attempted: bool,
        success: Optional[bool],
        payload: Optional[DispatchPayload],
        warning: str,
        fallback_actions: list[FallbackAction],
        alert_text: str = "",
    ) -> None:
        self.episode_id = episode_id
        self.attempted = attempted
        self.success = success
        self.payload = payload
        self.warning = warning
        self.fallback_actions = fallback_actions
        self.alert_text = alert_text

    @property
    def skipped(self) -> bool:
        return not self.attempted

    def __repr__(self) -> str:
        return (
            f"DispatchResult(episode_id={self.episode_id}, attempted={self.attempted}, "
            f"success={self.success}, warning='{self.warning}')"
        )


def fallback_actions_for(
    profile: Optional[Profile], policy: SwitchPolicy
) -> list[FallbackAction]:
    """Manual calls offered while EMERGENCY is shown: primary guardian first.

    Without a readable profile only the emergency number is offered.
    """
    actions = []
    primary = profile.primary_guardian if profile is not None else None
    if primary is not None:
        actions.append(FallbackAction(label=f"Call {primary.name}", phone=primary.phone))
    actions.append(
        FallbackAction(label="Call emergency services", phone=policy.emergency_number)
    )
    return actions


class EmergencyDispatchCoordinator:
    """Best-effort, once-per-episode emergency hand-off."""

    def __init__(
        self,
        channel: SyncChannel,
        location_provider: Optional[LocationProvider] = None,
        battery_provider: Optional[BatteryProvider] = None,
        policy: SwitchPolicy = DEFAULT_POLICY,
        event_log: Optional[SafetyEventLog] = None,
        content_provider: Optional[ContentProvider] = None,
    ) -> None:
        self.channel = channel
        self.content_provider = content_provider
        self.location_provider = location_provider
        self.battery_provider = battery_provider
        self.policy = policy
        self._events = event_log if event_log is not None else SafetyEventLog()
        self._in_flight: set[str] = set()

    # -- context gathering --

    async def _read_location(self, profile_id: str, episode_id: str) -> Optional[Location]:
        if self.location_provider is None:
            return None
        timeout = self.policy.location_timeout_seconds
        try:
            return await asyncio.wait_for(self.location_provider.get_location(), timeout)
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout}s"
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
        logger.warning("Location unavailable for dispatch (%s); continuing without it", reason)
        self._events.record(
            SafetyEventType.SENSOR_DEGRADED,
            profile_id=profile_id,
            episode_id=episode_id,
            sensor="location",
            reason=reason,
        )
        return None

    async def _read_battery(self, profile_id: str, episode_id: str) -> Optional[int]:
        if self.battery_provider is None:
            return None
        timeout = self.policy.battery_timeout_seconds
        try:
            percent = await asyncio.wait_for(
                self.battery_provider.get_battery_percent(), timeout
            )
            return max(0, min(100, int(percent)))
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout}s"
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
        logger.warning("Battery level unavailable for dispatch (%s)", reason)
        self._events.record(
            SafetyEventType.SENSOR_DEGRADED,
            profile_id=profile_id,
            episode_id=episode_id,
            sensor="battery",
            reason=reason,
        )
        return None

    async def _hand_off(self, profile_id: str, payload: DispatchPayload) -> tuple[bool, str]:
        timeout = self.policy.sync_timeout_seconds
        try:
            accepted = await asyncio.wait_for(
                self.channel.publish(profile_id, payload), timeout
            )
        except asyncio.TimeoutError:
            return False, f"Emergency sync timed out after {timeout}s."
        except Exception as exc:
            return False, f"Emergency sync failed: {type(exc).__name__}: {exc}"
        if not accepted:
            return False, "Emergency sync was rejected by the channel."
        return True, ""

    # -- dispatch --

    async def dispatch(
        self,
        episode: SafetyEpisode,
        profile: Profile,
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """Attempt the hand-off for ``episode``, at most once.

        Raises:
            ValueError: If the episode is not an EMERGENCY episode.
        """
        if episode.level != SafetyLevel.EMERGENCY:
            raise ValueError(
                f"Only EMERGENCY episodes are dispatched, got {episode.level.value}."
            )

        fallbacks = fallback_actions_for(profile, self.policy)
        if episode.dispatched or episode.episode_id in self._in_flight:
            return DispatchResult(
                episode_id=episode.episode_id,
                attempted=False,
                success=episode.sync_succeeded,
                payload=None,
                warning=episode.sync_warning,
                fallback_actions=fallbacks,
            )

        self._in_flight.add(episode.episode_id)
        try:
            location, battery = await asyncio.gather(
                self._read_location(profile.profile_id, episode.episode_id),
                self._read_battery(profile.profile_id, episode.episode_id),
            )
            payload = DispatchPayload(
                profile_id=profile.profile_id,
                location=location,
                battery=battery,
                trigger_reason=episode.trigger_reason,
                timestamp=ensure_utc(now) if now is not None else utcnow(),
            )

            (success, warning), (alert_text, _) = await asyncio.gather(
                self._hand_off(profile.profile_id, payload),
                fetch_emergency_message(
                    self.content_provider,
                    profile,
                    location,
                    self.policy.advisory_timeout_seconds,
                ),
            )
            episode.dispatched = True
            episode.sync_succeeded = success
            episode.sync_warning = warning
        finally:
            self._in_flight.discard(episode.episode_id)

        self._events.record(
            SafetyEventType.DISPATCH_ATTEMPTED,
            profile_id=profile.profile_id,
            episode_id=episode.episode_id,
            timestamp=payload.timestamp,
            trigger_reason=episode.trigger_reason.value,
            has_location=location is not None,
            battery=battery,
            success=success,
        )
        if not success:
            logger.warning("%s Manual fallback actions remain available.", warning)
            self._events.record(
                SafetyEventType.DISPATCH_FAILED,
                profile_id=profile.profile_id,
                episode_id=episode.episode_id,
                timestamp=payload.timestamp,
                reason=warning,
            )
        else:
            logger.info("Emergency payload handed off for %s", profile.profile_id)

        return DispatchResult(
            episode_id=episode.episode_id,
            attempted=True,
            success=success,
            payload=payload,
            warning=warning,
            fallback_actions=fallbacks,
            alert_text=alert_text,
        )
