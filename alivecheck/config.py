"""
Switch Policy -- tunable timing and escalation parameters.

The check-in interval belongs to the user's profile.  Everything else that
decides *how* the switch escalates lives here: the grace margin between
ATTENTION and EMERGENCY, the bounded timeouts for sensor reads and the sync
hand-off, the low-battery auto-panic threshold, and the morning window in
which a device unlock re-evaluates the switch.

**Why the grace margin is configuration:** deployments have used offsets
anywhere between one and six hours past the deadline.  A short margin
alerts guardians sooner but raises more false alarms for users who simply
overslept; there is no single correct value.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


class SwitchPolicy(BaseModel):
    """Complete escalation policy for the switch."""

    grace_margin_hours: float = Field(
        default=6.0,
        gt=0,
        description=(
            "Extra silence tolerated past the deadline before ATTENTION "
            "becomes EMERGENCY."
        ),
    )
    default_check_in_interval_hours: float = Field(
        default=24.0,
        gt=0,
        description="Interval given to a profile registered without one.",
    )
    tick_interval_seconds: int = Field(
        default=30,
        ge=1,
        le=30,
        description="Period of the foreground evaluation tick.",
    )
    location_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description=(
            "Upper bound on the position read during dispatch.  A slow or "
            "denied permission prompt must never hold up a panic."
        ),
    )
    battery_timeout_seconds: float = Field(default=2.0, gt=0)
    sync_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound on the sync channel hand-off.",
    )
    advisory_timeout_seconds: float = Field(default=5.0, gt=0)
    low_battery_threshold_percent: int = Field(
        default=10,
        ge=0,
        le=100,
        description=(
            "Device power at or below which auto-panic fires, for profiles "
            "that enabled it."
        ),
    )
    emergency_number: str = Field(
        default="112",
        min_length=1,
        description="Fixed emergency number offered as a manual fallback.",
    )
    min_guardians: int = Field(
        default=2,
        ge=0,
        description="Guardians required at registration.",
    )
    wake_window_start_hour: int = Field(default=6, ge=0, le=23)
    wake_window_end_hour: int = Field(
        default=10,
        ge=0,
        le=23,
        description="Last hour (inclusive) of the morning unlock window.",
    )

    @field_validator("wake_window_end_hour")
    @classmethod
    def end_after_start(cls, v: int, info) -> int:
        start = info.data.get("wake_window_start_hour")
        if start is not None and v < start:
            raise ValueError(
                f"wake_window_end_hour ({v}) must be >= wake_window_start_hour ({start})"
            )
        return v


DEFAULT_POLICY = SwitchPolicy()
"""Built-in policy used when no YAML file is supplied."""


def load_policy_from_yaml(path: str | Path) -> SwitchPolicy:
    """Load a switch policy from a YAML file.

    Example YAML structure::

        policy:
          grace_margin_hours: 2
          emergency_number: "112"

    Keys left out take the model defaults.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If a value fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "policy" not in raw:
        raise ValueError("YAML file must contain a top-level 'policy' mapping.")

    data = raw["policy"] or {}
    if not isinstance(data, dict):
        raise ValueError("'policy' must be a mapping of policy fields.")

    return SwitchPolicy(**data)
