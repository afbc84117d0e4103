"""
Tests for alivecheck.dispatch -- Emergency Dispatch Coordinator.

Covers: payload contents, idempotence, denied/hanging location, missing
battery, failing channel (False, exception, hang), fallback actions, and
non-EMERGENCY rejection.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from alivecheck.audit import SafetyEventLog, SafetyEventType
from alivecheck.capabilities import (
    DeniedLocationProvider,
    HangingLocationProvider,
    NullBatteryProvider,
    StaticBatteryProvider,
    StaticLocationProvider,
)
from alivecheck.config import SwitchPolicy
from alivecheck.content import ContentProvider, StaticContentProvider
from alivecheck.dispatch import EmergencyDispatchCoordinator, fallback_actions_for
from alivecheck.models import (
    DispatchPayload,
    Guardian,
    Location,
    Profile,
    SafetyEpisode,
    SafetyLevel,
    TriggerReason,
)
from alivecheck.sync import FailingSyncChannel, InMemorySyncChannel, SyncChannel

NOW = datetime(2025, 1, 11, 9, 10, tzinfo=timezone.utc)
FAST = SwitchPolicy(
    location_timeout_seconds=0.05,
    battery_timeout_seconds=0.05,
    sync_timeout_seconds=0.05,
    advisory_timeout_seconds=0.05,
)


def _make_profile(guardians: list[Guardian] | None = None) -> Profile:
    if guardians is None:
        guardians = [
            Guardian(name="Primary", phone="+10000000001"),
            Guardian(name="Second", phone="+10000000002"),
        ]
    return Profile(name="Test User", phone="+10000000000", guardians=guardians)


def _emergency(reason: TriggerReason = TriggerReason.TIMEOUT) -> SafetyEpisode:
    return SafetyEpisode(level=SafetyLevel.EMERGENCY, trigger_reason=reason)


class HangingSyncChannel(SyncChannel):
    async def publish(self, profile_id: str, payload: DispatchPayload) -> bool:
        await asyncio.Event().wait()
        return True


class HangingContentProvider(ContentProvider):
    async def get_emergency_message(self, profile, location):
        await asyncio.Event().wait()
        return "never"


# ---------------------------------------------------------------------------
# 1. Payload
# ---------------------------------------------------------------------------

class TestPayload:
    def test_payload_has_context(self):
        channel = InMemorySyncChannel()
        location = Location(lat=28.6139, lng=77.209)
        coordinator = EmergencyDispatchCoordinator(
            channel,
            location_provider=StaticLocationProvider(location),
            battery_provider=StaticBatteryProvider(37),
            policy=FAST,
        )
        profile = _make_profile()
        episode = _emergency(TriggerReason.MANUAL_PANIC)

        result = asyncio.run(coordinator.dispatch(episode, profile, NOW))

        assert result.attempted is True
        assert result.success is True
        assert result.warning == ""
        assert len(channel.published) == 1
        profile_id, payload = channel.published[0]
        assert profile_id == profile.profile_id
        assert payload.level == SafetyLevel.EMERGENCY
        assert payload.location == location
        assert payload.battery == 37
        assert payload.trigger_reason == TriggerReason.MANUAL_PANIC
        assert payload.timestamp == NOW
        assert episode.dispatched is True
        assert episode.sync_succeeded is True

    def test_wire_format_is_json_safe(self):
        payload = DispatchPayload(
            profile_id="p1", trigger_reason=TriggerReason.TIMEOUT, timestamp=NOW
        )
        wire = payload.to_wire()
        assert wire["level"] == "EMERGENCY"
        assert wire["location"] is None
        assert wire["timestamp"].startswith("2025-01-11T09:10:00")

    def test_mirror_record_is_kept(self):
        channel = InMemorySyncChannel()
        coordinator = EmergencyDispatchCoordinator(channel, policy=FAST)
        profile = _make_profile()
        asyncio.run(coordinator.dispatch(_emergency(), profile, NOW))
        status = channel.get_status(profile.profile_id)
        assert status["level"] == "EMERGENCY"
        assert "server_timestamp" in status
        assert channel.get_status("nobody") is None


# ---------------------------------------------------------------------------
# 2. Idempotence
# ---------------------------------------------------------------------------

class TestIdempotence:
    def test_second_dispatch_is_noop(self):
        channel = InMemorySyncChannel()
        coordinator = EmergencyDispatchCoordinator(channel, policy=FAST)
        profile = _make_profile()
        episode = _emergency()

        async def go():
            first = await coordinator.dispatch(episode, profile, NOW)
            second = await coordinator.dispatch(episode, profile, NOW)
            return first, second

        first, second = asyncio.run(go())
        assert first.attempted is True
        assert second.skipped is True
        assert len(channel.published) == 1

    def test_concurrent_dispatch_hands_off_once(self):
        channel = InMemorySyncChannel()
        coordinator = EmergencyDispatchCoordinator(
            channel,
            location_provider=StaticLocationProvider(Location(lat=0, lng=0), delay=0.01),
            policy=FAST,
        )
        profile = _make_profile()
        episode = _emergency()

        async def go():
            return await asyncio.gather(
                coordinator.dispatch(episode, profile, NOW),
                coordinator.dispatch(episode, profile, NOW),
            )

        results = asyncio.run(go())
        assert sum(r.attempted for r in results) == 1
        assert len(channel.published) == 1

    def test_failed_hand_off_is_not_retried(self):
        channel = FailingSyncChannel()
        coordinator = EmergencyDispatchCoordinator(channel, policy=FAST)
        episode = _emergency()
        profile = _make_profile()

        async def go():
            await coordinator.dispatch(episode, profile, NOW)
            return await coordinator.dispatch(episode, profile, NOW)

        second = asyncio.run(go())
        assert channel.attempts == 1
        assert second.skipped is True
        assert second.success is False
        assert second.warning


# ---------------------------------------------------------------------------
# 3. Degraded sensors
# ---------------------------------------------------------------------------

class TestDegradedSensors:
    def test_denied_location_still_dispatches(self):
        log = SafetyEventLog()
        channel = InMemorySyncChannel()
        coordinator = EmergencyDispatchCoordinator(
            channel,
            location_provider=DeniedLocationProvider(),
            policy=FAST,
            event_log=log,
        )
        profile = _make_profile()
        result = asyncio.run(coordinator.dispatch(_emergency(TriggerReason.MANUAL_PANIC), profile, NOW))

        assert result.success is True
        assert result.payload.location is None
        degraded = log.query(event_type=SafetyEventType.SENSOR_DEGRADED)
        assert degraded[0].metadata["sensor"] == "location"
        assert "PermissionError" in degraded[0].metadata["reason"]

    def test_hanging_location_is_bounded(self):
        channel = InMemorySyncChannel()
        coordinator = EmergencyDispatchCoordinator(
            channel, location_provider=HangingLocationProvider(), policy=FAST
        )
        result = asyncio.run(coordinator.dispatch(_emergency(), _make_profile(), NOW))
        assert result.payload.location is None
        assert len(channel.published) == 1

    def test_missing_battery_is_tolerated(self):
        channel = InMemorySyncChannel()
        coordinator = EmergencyDispatchCoordinator(
            channel, battery_provider=NullBatteryProvider(), policy=FAST
        )
        result = asyncio.run(coordinator.dispatch(_emergency(), _make_profile(), NOW))
        assert result.payload.battery is None
        assert result.success is True


# ---------------------------------------------------------------------------
# 4. Channel failures
# ---------------------------------------------------------------------------

class TestChannelFailure:
    @pytest.mark.parametrize("raise_error", [False, True])
    def test_failure_is_a_warning(self, raise_error):
        log = SafetyEventLog()
        coordinator = EmergencyDispatchCoordinator(
            FailingSyncChannel(raise_error=raise_error), policy=FAST, event_log=log
        )
        episode = _emergency()
        result = asyncio.run(coordinator.dispatch(episode, _make_profile(), NOW))

        assert result.attempted is True
        assert result.success is False
        assert result.warning
        assert episode.dispatched is True
        assert episode.sync_succeeded is False
        assert episode.level == SafetyLevel.EMERGENCY
        assert len(log.query(event_type=SafetyEventType.DISPATCH_FAILED)) == 1

    def test_hanging_channel_is_bounded(self):
        coordinator = EmergencyDispatchCoordinator(HangingSyncChannel(), policy=FAST)
        result = asyncio.run(coordinator.dispatch(_emergency(), _make_profile(), NOW))
        assert result.success is False
        assert "timed out" in result.warning


# ---------------------------------------------------------------------------
# 5. Fallbacks and preconditions
# ---------------------------------------------------------------------------

class TestFallbacks:
    def test_primary_guardian_then_emergency_number(self):
        actions = fallback_actions_for(_make_profile(), SwitchPolicy(emergency_number="112"))
        assert [a.phone for a in actions] == ["+10000000001", "112"]

    def test_no_guardians_still_offers_emergency_number(self):
        actions = fallback_actions_for(_make_profile(guardians=[]), SwitchPolicy())
        assert [a.phone for a in actions] == ["112"]

    def test_fallbacks_returned_even_on_failure(self):
        coordinator = EmergencyDispatchCoordinator(FailingSyncChannel(), policy=FAST)
        result = asyncio.run(coordinator.dispatch(_emergency(), _make_profile(), NOW))
        assert len(result.fallback_actions) == 2
        assert "Test User" in result.alert_text

    def test_non_emergency_episode_rejected(self):
        coordinator = EmergencyDispatchCoordinator(InMemorySyncChannel(), policy=FAST)
        episode = SafetyEpisode(level=SafetyLevel.ATTENTION)
        with pytest.raises(ValueError, match="EMERGENCY"):
            asyncio.run(coordinator.dispatch(episode, _make_profile(), NOW))


# ---------------------------------------------------------------------------
# 6. Guardian alert text
# ---------------------------------------------------------------------------

class TestAlertText:
    def test_generated_message_is_used(self):
        coordinator = EmergencyDispatchCoordinator(
            InMemorySyncChannel(),
            policy=FAST,
            content_provider=StaticContentProvider(emergency_message="  Please call Test User now.  "),
        )
        result = asyncio.run(coordinator.dispatch(_emergency(), _make_profile(), NOW))
        assert result.alert_text == "Please call Test User now."

    def test_hanging_generator_falls_back_to_static_text(self):
        channel = InMemorySyncChannel()
        coordinator = EmergencyDispatchCoordinator(
            channel, policy=FAST, content_provider=HangingContentProvider()
        )
        result = asyncio.run(coordinator.dispatch(_emergency(), _make_profile(), NOW))
        assert result.alert_text.startswith("EMERGENCY ALERT: Test User")
        assert result.success is True
        assert len(channel.published) == 1

    def test_blank_generated_message_falls_back(self):
        coordinator = EmergencyDispatchCoordinator(
            InMemorySyncChannel(), policy=FAST, content_provider=StaticContentProvider()
        )
        result = asyncio.run(coordinator.dispatch(_emergency(), _make_profile(), NOW))
        assert result.alert_text.endswith("Last known: Unknown.")
