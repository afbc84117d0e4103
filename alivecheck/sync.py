"""
Sync / Notification Channel Interfaces.

The channel is where an emergency payload leaves this package.  Delivery to
guardians (SMS, push, cloud functions) and any retrying are the channel's
job; the core calls ``publish`` once per emergency episode and treats the
result as fire-and-forget.

**This module does not guarantee delivery of emergency notifications.**
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from alivecheck.models import DispatchPayload

logger = logging.getLogger(__name__)


class SyncChannel:
    """Interface for the external broadcast channel."""

    async def publish(self, profile_id: str, payload: DispatchPayload) -> bool:
        """Hand ``payload`` over.  Returns True on acceptance."""
        raise NotImplementedError


class InMemorySyncChannel(SyncChannel):
    """Mirror of the cloud record, keyed by profile id.

    Each publish merges the payload into the profile's record and stamps a
    server timestamp, the way the realtime database mirror behaves.  Useful
    for demos and tests; ``published`` keeps every accepted payload.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self.published: list[tuple[str, DispatchPayload]] = []

    async def publish(self, profile_id: str, payload: DispatchPayload) -> bool:
        record = self._records.setdefault(profile_id, {})
        record.update(payload.to_wire())
        record["server_timestamp"] = datetime.now(timezone.utc).isoformat()
        self.published.append((profile_id, payload))
        logger.info("Mirrored %s status for %s", payload.level.value, profile_id)
        return True

    def get_status(self, profile_id: str) -> Optional[dict[str, Any]]:
        record = self._records.get(profile_id)
        return dict(record) if record is not None else None


class FailingSyncChannel(SyncChannel):
    """A channel that is down.  ``raise_error`` picks raise vs. False."""

    def __init__(self, raise_error: bool = False) -> None:
        self.raise_error = raise_error
        self.attempts = 0

    async def publish(self, profile_id: str, payload: DispatchPayload) -> bool:
        self.attempts += 1
        if self.raise_error:
            raise ConnectionError("Sync channel unreachable.")
        return False
