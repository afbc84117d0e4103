"""
Safety Controller -- the single owner of profile and episode.

Every evaluation and every user action runs under one ``asyncio.Lock``, so
a check-in that races a timer tick is applied atomically and each
evaluation sees a consistent ``(now, last_check_in_at)`` pair.  The timer
driver and the wake trigger are just more callers of ``evaluate()``.

**Degraded operation:**

* Store unreadable: ``evaluate()`` holds the last known level; user actions
  work from the last profile read.  A write that failed is kept pending and
  written back on the next successful read, never moving the check-in
  backward.  A panic still raises EMERGENCY; the hand-off waits for the
  profile to become readable.
* Sensors denied or slow: dispatch proceeds with partial data.
* Channel down: EMERGENCY stays, the snapshot shows the warning and the
  fallback calls.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from alivecheck.audit import SafetyEventLog, SafetyEventType
from alivecheck.capabilities import BatteryProvider, LocationProvider
from alivecheck.config import DEFAULT_POLICY, SwitchPolicy
from alivecheck.content import ContentProvider, fetch_advisory, fetch_voice
from alivecheck.dispatch import DispatchResult, EmergencyDispatchCoordinator
from alivecheck.models import (
    Guardian,
    Profile,
    ProfileConfig,
    SafetyEpisode,
    SafetyLevel,
    utcnow,
)
from alivecheck.scheduler import ensure_utc
from alivecheck.state_machine import SafetyStateMachine
from alivecheck.status_report import StatusSnapshot, build_status_snapshot
from alivecheck.store import ProfileStore, ProfileStoreUnavailableError
from alivecheck.sync import InMemorySyncChannel, SyncChannel

logger = logging.getLogger(__name__)


class RegistrationError(Exception):
    """Raised when a profile cannot be registered."""
    pass


class ProfileNotRegisteredError(Exception):
    """Raised when a user action arrives before registration."""
    pass


class SafetyController:
    """Wires the store, state machine, dispatcher and content together."""

    def __init__(
        self,
        store: ProfileStore,
        policy: SwitchPolicy = DEFAULT_POLICY,
        channel: Optional[SyncChannel] = None,
        location_provider: Optional[LocationProvider] = None,
        battery_provider: Optional[BatteryProvider] = None,
        content_provider: Optional[ContentProvider] = None,
        event_log: Optional[SafetyEventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.policy = policy
        self.events = event_log if event_log is not None else SafetyEventLog()
        self.content_provider = content_provider
        self._clock = clock or utcnow
        self.machine = SafetyStateMachine(policy, self.events, now=self._clock())
        self.coordinator = EmergencyDispatchCoordinator(
            channel if channel is not None else InMemorySyncChannel(),
            location_provider=location_provider,
            battery_provider=battery_provider,
            policy=policy,
            event_log=self.events,
            content_provider=content_provider,
        )
        self._lock = asyncio.Lock()
        self._profile: Optional[Profile] = None
        self._pending: Optional[Profile] = None
        self._store_available = True
        self.last_advisory: Optional[str] = None
        self.last_voice: Optional[bytes] = None
        self.last_dispatch: Optional[DispatchResult] = None

    # -- helpers --

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else self._clock()

    def _load(self) -> Optional[Profile]:
        """Read the store; None when it is unreadable or empty.

        A profile whose write failed earlier is written back first.
        """
        try:
            stored = self.store.load()
        except ProfileStoreUnavailableError as exc:
            self._store_available = False
            logger.warning("Profile store unavailable, holding %s: %s", self.machine.level.value, exc)
            self.events.record(
                SafetyEventType.STORE_UNAVAILABLE,
                profile_id=self._profile.profile_id if self._profile else "",
                episode_id=self.machine.episode.episode_id,
                reason=str(exc),
            )
            return None
        self._store_available = True
        if self._pending is not None:
            return self._flush_pending(stored)
        if stored is not None:
            self._profile = stored
        return stored

    def _flush_pending(self, stored: Optional[Profile]) -> Profile:
        pending = self._pending
        # last_check_in_at never moves backward, whichever copy is newer
        if stored is not None and stored.last_check_in_at > pending.last_check_in_at:
            pending = pending.model_copy(
                update={"last_check_in_at": stored.last_check_in_at}
            )
        logger.info("Writing back pending profile %s", pending.profile_id)
        self._persist(pending)
        return pending

    def _current_profile(self) -> Profile:
        """The stored profile, else the last one seen.

        Raises:
            ProfileStoreUnavailableError: If the store is unreadable and no
                profile has been seen yet.
            ProfileNotRegisteredError: If the store holds no profile.
        """
        profile = self._load() or self._profile
        if profile is not None:
            return profile
        if not self._store_available:
            raise ProfileStoreUnavailableError(
                "Profile store is unavailable and no profile has been read yet."
            )
        raise ProfileNotRegisteredError("No profile registered on this device.")

    def _persist(self, profile: Profile) -> None:
        self._profile = profile
        try:
            self.store.save(profile)
        except ProfileStoreUnavailableError as exc:
            self._pending = profile
            logger.warning("Could not persist profile %s, will retry: %s", profile.profile_id, exc)
            self.events.record(
                SafetyEventType.STORE_UNAVAILABLE,
                profile_id=profile.profile_id,
                episode_id=self.machine.episode.episode_id,
                reason=str(exc),
            )
            return
        self._pending = None

    async def _dispatch_if_needed(self, now: datetime) -> None:
        if not self.machine.needs_dispatch or self._profile is None:
            return
        self.last_dispatch = await self.coordinator.dispatch(
            self.machine.episode, self._profile, now
        )

    async def _request_advisory(self, profile: Profile) -> None:
        text, used_fallback = await fetch_advisory(
            self.content_provider, profile, self.policy.advisory_timeout_seconds
        )
        self.last_advisory = text
        self.last_voice = await fetch_voice(
            self.content_provider,
            text,
            profile.config.language,
            self.policy.advisory_timeout_seconds,
        )
        if used_fallback:
            self.events.record(
                SafetyEventType.ADVISORY_FALLBACK,
                profile_id=profile.profile_id,
                episode_id=self.machine.episode.episode_id,
            )

    # -- profile lifecycle --

    @property
    def profile(self) -> Optional[Profile]:
        """Last profile read from, or written to, the store."""
        return self._profile

    def register(
        self,
        name: str,
        phone: str,
        guardians: list[Guardian],
        interval_hours: Optional[float] = None,
        age: Optional[str] = None,
        config: Optional[ProfileConfig] = None,
        now: Optional[datetime] = None,
    ) -> Profile:
        """Create the device's profile and start a fresh SAFE episode.

        Raises:
            RegistrationError: If a profile already exists, or fewer than
                ``policy.min_guardians`` guardians were given.
            ProfileStoreUnavailableError: If the store cannot be read or written.
        """
        if self.store.load() is not None:
            raise RegistrationError(
                "A profile is already registered. Reset it before registering again."
            )
        if len(guardians) < self.policy.min_guardians:
            raise RegistrationError(
                f"At least {self.policy.min_guardians} guardians are required, "
                f"got {len(guardians)}."
            )

        now = self._now(now)
        profile = Profile(
            name=name,
            phone=phone,
            age=age,
            last_check_in_at=now,
            check_in_interval_hours=(
                interval_hours
                if interval_hours is not None
                else self.policy.default_check_in_interval_hours
            ),
            guardians=list(guardians),
            config=config or ProfileConfig(),
        )
        self.store.save(profile)
        self._profile = profile
        self._pending = None
        self.machine = SafetyStateMachine(self.policy, self.events, now=now)
        self.events.record(
            SafetyEventType.PROFILE_REGISTERED,
            profile_id=profile.profile_id,
            episode_id=self.machine.episode.episode_id,
            timestamp=now,
            interval_hours=profile.check_in_interval_hours,
            guardian_count=len(profile.guardians),
        )
        logger.info("Registered profile %s", profile.profile_id)
        return profile

    def add_guardian(self, guardian: Guardian) -> Profile:
        """Append a guardian.  The primary guardian stays at index 0."""
        profile = self._current_profile()
        guardians = [g.model_dump() for g in (*profile.guardians, guardian)]
        updated = Profile.model_validate({**profile.model_dump(), "guardians": guardians})
        self._persist(updated)
        self.events.record(
            SafetyEventType.GUARDIANS_CHANGED,
            profile_id=updated.profile_id,
            action="added",
            guardian_id=guardian.id,
        )
        return updated

    def remove_guardian(self, guardian_id: str) -> Profile:
        """Remove a guardian by id, keeping the order of the rest.

        Raises:
            KeyError: If no guardian has ``guardian_id``.
        """
        profile = self._current_profile()
        remaining = [g for g in profile.guardians if g.id != guardian_id]
        if len(remaining) == len(profile.guardians):
            raise KeyError(f"No guardian with id '{guardian_id}'")
        updated = profile.model_copy(update={"guardians": remaining})
        self._persist(updated)
        self.events.record(
            SafetyEventType.GUARDIANS_CHANGED,
            profile_id=updated.profile_id,
            action="removed",
            guardian_id=guardian_id,
        )
        return updated

    def reset(self, now: Optional[datetime] = None) -> None:
        """Destroy the profile.  Irreversible."""
        now = self._now(now)
        profile_id = self._profile.profile_id if self._profile else ""
        self.store.reset()
        self._profile = None
        self._pending = None
        self.last_advisory = None
        self.last_voice = None
        self.last_dispatch = None
        self.machine = SafetyStateMachine(self.policy, self.events, now=now)
        self.events.record(SafetyEventType.PROFILE_RESET, profile_id=profile_id, timestamp=now)
        logger.info("Profile %s reset", profile_id or "<none>")

    # -- evaluation and user actions --

    async def evaluate(self, now: Optional[datetime] = None) -> SafetyEpisode:
        """The tick: re-evaluate the level and dispatch if EMERGENCY is new.

        Idempotent and never raises.
        """
        async with self._lock:
            try:
                now = self._now(now)
                profile = self._load()
                self.machine.evaluate(now, profile)
                if profile is not None:
                    await self._dispatch_if_needed(now)
            except Exception:
                logger.exception("Evaluation tick failed; holding %s", self.machine.level.value)
            return self.machine.episode

    async def check_in(self, now: Optional[datetime] = None) -> SafetyEpisode:
        """"I'm alive": reset the deadline.

        Raises:
            ProfileNotRegisteredError: If nobody has registered.
            ProfileStoreUnavailableError: If the store is unreadable and no
                profile has been read since start-up.
        """
        async with self._lock:
            now = self._now(now)
            updated = self.machine.check_in(now, self._current_profile())
            self._persist(updated)
            episode = self.machine.episode
        if episode.level == SafetyLevel.SAFE:
            await self._request_advisory(updated)
        return episode

    async def panic(self, now: Optional[datetime] = None) -> SafetyEpisode:
        """Raise EMERGENCY immediately and dispatch.

        Works with an unreadable store too; the hand-off then waits for the
        next evaluation that can read the profile.

        Raises:
            ProfileNotRegisteredError: If the store holds no profile.
        """
        async with self._lock:
            now = self._now(now)
            try:
                profile_id = self._current_profile().profile_id
            except ProfileStoreUnavailableError:
                # the next tick that can read the profile dispatches
                logger.warning("Panic raised without a readable profile; dispatch deferred")
                profile_id = ""
            self.machine.panic(now, profile_id)
            await self._dispatch_if_needed(now)
            return self.machine.episode

    async def report_battery(
        self, percent: Optional[int], now: Optional[datetime] = None
    ) -> SafetyEpisode:
        """Feed a device power reading; may auto-panic."""
        async with self._lock:
            now = self._now(now)
            self.machine.report_battery(now, percent, self._current_profile())
            await self._dispatch_if_needed(now)
            return self.machine.episode

    async def cancel_emergency(self, now: Optional[datetime] = None) -> SafetyEpisode:
        """"I am safe now": leave EMERGENCY with a check-in.

        Raises:
            InvalidTransitionError: If EMERGENCY is not active.
        """
        async with self._lock:
            now = self._now(now)
            updated = self.machine.cancel_emergency(now, self._current_profile())
            self._persist(updated)
            self.last_dispatch = None
            episode = self.machine.episode
        await self._request_advisory(updated)
        return episode

    def snapshot(self, now: Optional[datetime] = None) -> StatusSnapshot:
        return build_status_snapshot(
            self.machine.episode, self._profile, self.policy, self._now(now)
        )
