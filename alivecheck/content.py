"""
Content collaborator interface.

After a check-in the app shows a short reassuring line (and may read it
aloud), and an emergency carries a message for the guardians.  That text
comes from an external generator which may be slow or down; nothing here
may delay or break the state machine, so every call is bounded and failures
fall back to static text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from alivecheck.models import Location, Profile

logger = logging.getLogger(__name__)

FALLBACK_ADVISORY = "Your safety is our priority."


class ContentProvider:
    async def get_advisory(self, profile: Profile) -> str:
        raise NotImplementedError

    async def get_voice(self, text: str, language: str) -> Optional[bytes]:
        raise NotImplementedError

    async def get_emergency_message(
        self, profile: Profile, location: Optional[Location]
    ) -> str:
        raise NotImplementedError


class StaticContentProvider(ContentProvider):
    """Provider used when no generator is configured."""

    def __init__(
        self,
        advisory: str = "You are protected.",
        voice: Optional[bytes] = None,
        emergency_message: str = "",
    ) -> None:
        self.advisory = advisory
        self.voice = voice
        self.emergency_message = emergency_message
        self.requests = 0
        self.voice_requests: list[tuple[str, str]] = []

    async def get_advisory(self, profile: Profile) -> str:
        self.requests += 1
        return self.advisory

    async def get_voice(self, text: str, language: str) -> Optional[bytes]:
        self.voice_requests.append((text, language))
        return self.voice

    async def get_emergency_message(
        self, profile: Profile, location: Optional[Location]
    ) -> str:
        return self.emergency_message


async def fetch_advisory(
    provider: Optional[ContentProvider], profile: Profile, timeout: float
) -> tuple[str, bool]:
    """Ask ``provider`` for advisory text.

    Returns:
        ``(text, used_fallback)``.
    """
    if provider is None:
        return FALLBACK_ADVISORY, True
    try:
        text = await asyncio.wait_for(provider.get_advisory(profile), timeout)
    except asyncio.TimeoutError:
        logger.warning("Advisory request timed out after %ss", timeout)
        return FALLBACK_ADVISORY, True
    except Exception as exc:
        logger.warning("Advisory request failed: %s", exc)
        return FALLBACK_ADVISORY, True
    if not text or not text.strip():
        return FALLBACK_ADVISORY, True
    return text.strip(), False


async def fetch_voice(
    provider: Optional[ContentProvider], text: str, language: str, timeout: float
) -> Optional[bytes]:
    if provider is None:
        return None
    try:
        return await asyncio.wait_for(provider.get_voice(text, language), timeout)
    except Exception as exc:
        logger.warning("Voice request failed: %s", exc)
        return None


def emergency_alert_text(profile: Profile, location: Optional[Location] = None) -> str:
    """Static alert text for guardians when generated text is unavailable."""
    where = f"{location.lat:.5f},{location.lng:.5f}" if location is not None else "Unknown"
    return (
        f"EMERGENCY ALERT: {profile.name} missed their check-in. "
        f"Please check on them immediately. Last known: {where}."
    )


async def fetch_emergency_message(
    provider: Optional[ContentProvider],
    profile: Profile,
    location: Optional[Location],
    timeout: float,
) -> tuple[str, bool]:
    """Guardian alert text from ``provider``, else ``emergency_alert_text``.

    Returns:
        ``(text, used_fallback)``.
    """
    fallback = emergency_alert_text(profile, location)
    if provider is None:
        return fallback, True
    try:
        text = await asyncio.wait_for(
            provider.get_emergency_message(profile, location), timeout
        )
    except asyncio.TimeoutError:
        logger.warning("Emergency message request timed out after %ss", timeout)
        return fallback, True
    except Exception as exc:
        logger.warning("Emergency message request failed: %s", exc)
        return fallback, True
    if not text or not text.strip():
        return fallback, True
    return text.strip(), False
