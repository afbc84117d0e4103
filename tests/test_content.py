"""
Tests for alivecheck.content -- advisory text and alert fallbacks.
"""

import asyncio

from alivecheck.content import (
    FALLBACK_ADVISORY,
    ContentProvider,
    StaticContentProvider,
    emergency_alert_text,
    fetch_advisory,
    fetch_emergency_message,
    fetch_voice,
)
from alivecheck.models import Location, Profile


class SlowContentProvider(ContentProvider):
    async def get_emergency_message(self, profile, location):
        await asyncio.sleep(1)
        return "too late"

    async def get_advisory(self, profile):
        await asyncio.sleep(1)
        return "too late"

    async def get_voice(self, text, language):
        await asyncio.sleep(1)
        return b"audio"


def _make_profile() -> Profile:
    return Profile(name="Test User", phone="+10000000000")


class TestFetchAdvisory:
    def test_provider_text(self):
        text, fallback = asyncio.run(
            fetch_advisory(StaticContentProvider("  Drink water.  "), _make_profile(), 1.0)
        )
        assert (text, fallback) == ("Drink water.", False)

    def test_no_provider(self):
        assert asyncio.run(fetch_advisory(None, _make_profile(), 1.0)) == (FALLBACK_ADVISORY, True)

    def test_timeout(self):
        result = asyncio.run(fetch_advisory(SlowContentProvider(), _make_profile(), 0.01))
        assert result == (FALLBACK_ADVISORY, True)

    def test_blank_text(self):
        result = asyncio.run(fetch_advisory(StaticContentProvider("   "), _make_profile(), 1.0))
        assert result == (FALLBACK_ADVISORY, True)


class TestFetchVoice:
    def test_timeout_returns_none(self):
        assert asyncio.run(fetch_voice(SlowContentProvider(), "hi", "en", 0.01)) is None

    def test_static_provider_has_no_voice(self):
        assert asyncio.run(fetch_voice(StaticContentProvider(), "hi", "en", 1.0)) is None


class TestEmergencyAlertText:
    def test_unknown_location(self):
        text = emergency_alert_text(_make_profile())
        assert text.startswith("EMERGENCY ALERT: Test User missed their check-in.")
        assert text.endswith("Last known: Unknown.")

    def test_with_location(self):
        text = emergency_alert_text(_make_profile(), Location(lat=28.6139, lng=77.209))
        assert "Last known: 28.61390,77.20900." in text


class TestFetchEmergencyMessage:
    def test_provider_text(self):
        provider = StaticContentProvider(emergency_message="Check on Test User.")
        result = asyncio.run(fetch_emergency_message(provider, _make_profile(), None, 1.0))
        assert result == ("Check on Test User.", False)

    def test_timeout_uses_static_alert(self):
        location = Location(lat=1.5, lng=2.5)
        text, fallback = asyncio.run(
            fetch_emergency_message(SlowContentProvider(), _make_profile(), location, 0.01)
        )
        assert fallback is True
        assert text == emergency_alert_text(_make_profile(), location)

    def test_no_provider(self):
        text, fallback = asyncio.run(fetch_emergency_message(None, _make_profile(), None, 1.0))
        assert fallback is True
        assert text.startswith("EMERGENCY ALERT")
