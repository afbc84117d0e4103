"""
Core data models for the AliveCheck safety switch.

A ``Profile`` is the durable record of one installed user: who they are,
how often they must check in, and which guardians to alert.  A
``SafetyEpisode`` is the in-memory record of the level the user currently
occupies; a new one is created at every level transition.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SafetyLevel(str, enum.Enum):
    """Safety levels, in increasing order of severity.

    * ``SAFE``      -- the user checked in within the configured interval.
    * ``ATTENTION`` -- the check-in is overdue, but within the grace margin.
    * ``EMERGENCY`` -- silent well past the deadline, or a panic was raised.
      Guardians are alerted once per episode.
    """

    SAFE = "SAFE"
    ATTENTION = "ATTENTION"
    EMERGENCY = "EMERGENCY"


class TriggerReason(str, enum.Enum):
    """Why the current episode was entered."""

    TIMEOUT = "TIMEOUT"
    MANUAL_PANIC = "MANUAL_PANIC"
    AUTO_LOW_BATTERY = "AUTO_LOW_BATTERY"
    CHECK_IN_RESET = "CHECK_IN_RESET"


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

class Guardian(BaseModel):
    """A registered emergency contact."""

    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex[:9],
        description="Stable identifier, unique within a profile.",
    )
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    relation: str = Field(default="Family")


class ProfileConfig(BaseModel):
    """Optional behavior flags.

    Every field carries a default so that records persisted before a flag
    existed still load.
    """

    auto_panic_low_battery: bool = Field(
        default=False,
        description="Raise EMERGENCY when device power drops to the policy threshold.",
    )
    shake_to_sos: bool = Field(
        default=False,
        description="Stored for the shake sensor; the sensor itself lives outside this package.",
    )
    silent_siren: bool = Field(default=False)
    language: str = Field(
        default="en",
        description="Language code handed to the content collaborator.",
    )


class Profile(BaseModel):
    """The durable record of one installed user."""

    profile_id: str = Field(
        default="",
        description="Stable key for the record.  Defaults to the phone number.",
    )
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    age: Optional[str] = None
    last_check_in_at: datetime = Field(
        default_factory=utcnow,
        description="UTC instant of the most recent confirmed check-in.",
    )
    check_in_interval_hours: float = Field(
        default=24.0,
        gt=0,
        description="Allowed silence window before escalation to ATTENTION.",
    )
    guardians: list[Guardian] = Field(
        default_factory=list,
        description="Ordered guardians; index 0 is the primary contact.",
    )
    config: ProfileConfig = Field(default_factory=ProfileConfig)

    @field_validator("last_check_in_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("guardians")
    @classmethod
    def _unique_guardian_ids(cls, v: list[Guardian]) -> list[Guardian]:
        ids = [g.id for g in v]
        if len(ids) != len(set(ids)):
            raise ValueError("guardian ids must be unique within a profile")
        return v

    @model_validator(mode="after")
    def _default_profile_id(self) -> "Profile":
        if not self.profile_id:
            self.profile_id = self.phone
        return self

    @property
    def primary_guardian(self) -> Optional[Guardian]:
        return self.guardians[0] if self.guardians else None


# ---------------------------------------------------------------------------
# Episode and dispatch
# ---------------------------------------------------------------------------

class SafetyEpisode(BaseModel):
    """One continuous occupancy of a safety level.

    ``dispatched`` is set once the dispatch coordinator has attempted the
    hand-off for this episode, successful or not.  It is what makes repeated
    evaluation ticks safe.
    """

    episode_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    level: SafetyLevel = SafetyLevel.SAFE
    entered_at: datetime = Field(default_factory=utcnow)
    trigger_reason: TriggerReason = TriggerReason.CHECK_IN_RESET
    dispatched: bool = False
    sync_succeeded: Optional[bool] = Field(
        default=None,
        description="Outcome of the hand-off; None until one was attempted.",
    )
    sync_warning: str = ""


class Location(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy_m: Optional[float] = None
    captured_at: datetime = Field(default_factory=utcnow)


class DispatchPayload(BaseModel):
    """What the sync channel receives when an emergency is raised."""

    profile_id: str
    level: SafetyLevel = SafetyLevel.EMERGENCY
    location: Optional[Location] = None
    battery: Optional[int] = Field(default=None, ge=0, le=100)
    trigger_reason: TriggerReason
    timestamp: datetime = Field(default_factory=utcnow)

    def to_wire(self) -> dict[str, Any]:
        """JSON-safe representation for the channel."""
        return self.model_dump(mode="json")


class FallbackAction(BaseModel):
    """A manual call the user can make while EMERGENCY is shown."""

    label: str
    phone: str
