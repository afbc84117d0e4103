"""
Append-Only Safety Event Journal (Hash-Chained).

Every decision the switch takes -- level transitions, check-ins, panic and
cancel actions, dispatch attempts, degraded sensor reads, store outages --
is recorded as a structured, append-only entry.  Entries are linked via a
SHA-256 hash chain so a journal that was edited after the fact fails
``verify_chain()``.

Exports for review strip guardian names and phone numbers; the journal is
meant to explain *what the switch did*, not to leak the user's contact list.
"""

from __future__ import annotations

import enum
import hashlib
import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class SafetyEventType(str, enum.Enum):
    """Every event the switch records."""

    # Profile lifecycle
    PROFILE_REGISTERED = "PROFILE_REGISTERED"
    PROFILE_RESET = "PROFILE_RESET"
    GUARDIANS_CHANGED = "GUARDIANS_CHANGED"

    # User actions
    CHECK_IN = "CHECK_IN"
    PANIC_RAISED = "PANIC_RAISED"
    EMERGENCY_CANCELLED = "EMERGENCY_CANCELLED"

    # State machine
    LEVEL_CHANGED = "LEVEL_CHANGED"

    # Dispatch
    DISPATCH_ATTEMPTED = "DISPATCH_ATTEMPTED"
    DISPATCH_FAILED = "DISPATCH_FAILED"
    SENSOR_DEGRADED = "SENSOR_DEGRADED"

    # Degraded operation
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    ADVISORY_FALLBACK = "ADVISORY_FALLBACK"


class SafetyEvent(BaseModel):
    """A single journal entry."""

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    profile_id: str = Field(
        default="",
        description="Profile the event concerns; empty before registration.",
    )
    event_type: SafetyEventType
    episode_id: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = ""

    def canonical_bytes(self) -> bytes:
        data = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "profile_id": self.profile_id,
            "event_type": self.event_type.value,
            "episode_id": self.episode_id,
            "metadata": self.metadata,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s().-]{6,}\d")

_CONTACT_KEYS = {"phone", "guardian_name", "guardian_phone", "name", "guardians"}


def redact_contacts(metadata: dict[str, Any]) -> dict[str, Any]:
    """Replace contact details in ``metadata`` with ``[REDACTED]`` markers."""
    redacted: dict[str, Any] = {}
    for key, value in metadata.items():
        if key.lower() in _CONTACT_KEYS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, str):
            redacted[key] = _PHONE_PATTERN.sub("[REDACTED-PHONE]", value)
        elif isinstance(value, dict):
            redacted[key] = redact_contacts(value)
        else:
            redacted[key] = value
    return redacted


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------

class SafetyEventLog:
    """Append-only journal with SHA-256 hash chaining.

    There is no update or delete: once appended, an entry can only be read
    back through ``query()`` (which returns copies) or exported.
    """

    def __init__(self) -> None:
        self._entries: list[SafetyEvent] = []
        self._hashes: list[str] = []

    def append(self, entry: SafetyEvent) -> SafetyEvent:
        entry.previous_hash = self._hashes[-1] if self._hashes else ""
        self._entries.append(entry)
        self._hashes.append(entry.compute_hash())
        return entry

    def record(
        self,
        event_type: SafetyEventType,
        profile_id: str = "",
        episode_id: str = "",
        timestamp: Optional[datetime] = None,
        **metadata: Any,
    ) -> SafetyEvent:
        """Build and append an entry in one call."""
        entry = SafetyEvent(
            event_type=event_type,
            profile_id=profile_id,
            episode_id=episode_id,
            metadata=metadata,
        )
        if timestamp is not None:
            entry.timestamp = timestamp
        return self.append(entry)

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Walk the journal and validate every hash link.

        Returns:
            ``(valid, broken_at)``; ``broken_at`` is the index of the first
            broken link, or None.
        """
        for i, entry in enumerate(self._entries):
            expected_prev = "" if i == 0 else self._entries[i - 1].compute_hash()
            if entry.previous_hash != expected_prev:
                return (False, i)
            if self._hashes[i] != entry.compute_hash():
                return (False, i)
        return (True, None)

    def query(
        self,
        profile_id: Optional[str] = None,
        event_type: Optional[SafetyEventType] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> list[SafetyEvent]:
        """Return copies of matching entries, oldest first."""
        results = []
        for entry in self._entries:
            if profile_id is not None and entry.profile_id != profile_id:
                continue
            if event_type is not None and entry.event_type != event_type:
                continue
            if time_start is not None and entry.timestamp < time_start:
                continue
            if time_end is not None and entry.timestamp > time_end:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def export_for_review(self, profile_id: str) -> dict[str, Any]:
        """JSON-serializable export with contact details redacted."""
        entries = []
        for entry in self.query(profile_id):
            entry_dict = entry.model_dump(mode="json")
            entry_dict["metadata"] = redact_contacts(entry.metadata)
            entries.append(entry_dict)

        chain_valid, broken_at = self.verify_chain()
        return {
            "export_metadata": {
                "profile_id": profile_id,
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(entries),
                "chain_integrity": "VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
            },
            "entries": entries,
        }

    def __len__(self) -> int:
        return len(self._entries)
