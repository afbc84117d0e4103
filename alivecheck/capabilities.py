"""
Device capability interfaces.

Position and power readings are best-effort: the OS may deny permission,
hang on a prompt, or simply not expose the reading.  The dispatch
coordinator only sees these interfaces and wraps every call in a hard
timeout, so tests can substitute fakes that deny, fail or hang.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from alivecheck.models import Location


class CapabilityUnavailableError(Exception):
    """Raised when a reading is denied or not supported on this device."""
    pass


class LocationProvider:
    async def get_location(self) -> Location:
        raise NotImplementedError


class BatteryProvider:
    async def get_battery_percent(self) -> int:
        raise NotImplementedError


class NullBatteryProvider(BatteryProvider):
    async def get_battery_percent(self) -> int:
        raise CapabilityUnavailableError("Battery level is not available on this device.")


class StaticLocationProvider(LocationProvider):
    """Always reports the same position.  Optional ``delay`` in seconds."""

    def __init__(self, location: Location, delay: float = 0.0) -> None:
        self.location = location
        self.delay = delay
        self.calls = 0

    async def get_location(self) -> Location:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.location


class StaticBatteryProvider(BatteryProvider):
    def __init__(self, percent: Optional[int]) -> None:
        self.percent = percent

    async def get_battery_percent(self) -> int:
        if self.percent is None:
            raise CapabilityUnavailableError("Battery level is not available on this device.")
        return self.percent


class DeniedLocationProvider(LocationProvider):
    """The user refused the location permission prompt."""

    async def get_location(self) -> Location:
        raise PermissionError("Location permission denied.")


class HangingLocationProvider(LocationProvider):
    """A permission prompt nobody answers."""

    async def get_location(self) -> Location:
        await asyncio.Event().wait()
        raise AssertionError("unreachable")
