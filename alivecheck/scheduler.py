"""
Deadline Scheduler -- timing facts derived from the profile.

Everything here is pure and total: no I/O, no clock reads, no exceptions for
any datetime input.  Callers pass ``now`` explicitly so tests can drive the
switch with a synthetic clock.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from alivecheck.models import SafetyLevel

_ZERO = timedelta(0)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def interval_duration(interval_hours: float) -> timedelta:
    return timedelta(hours=interval_hours)


def compute_deadline(last_check_in_at: datetime, interval_hours: float) -> datetime:
    """Instant by which the next check-in is due."""
    return ensure_utc(last_check_in_at) + interval_duration(interval_hours)


def compute_remaining(now: datetime, deadline: datetime) -> timedelta:
    """Signed time until ``deadline``.  Zero or negative means it has passed."""
    return ensure_utc(deadline) - ensure_utc(now)


def clamped_remaining(
    now: datetime, last_check_in_at: datetime, interval_hours: float
) -> timedelta:
    """Remaining time clamped to ``[0, interval]``.

    A clock that moved behind ``last_check_in_at`` would otherwise show a
    countdown longer than the interval; it reads as the full interval
    restarted from ``now`` instead.
    """
    full = interval_duration(interval_hours)
    remaining = compute_remaining(now, compute_deadline(last_check_in_at, interval_hours))
    return max(_ZERO, min(remaining, full))


def elapsed_since(now: datetime, last_check_in_at: datetime) -> timedelta:
    """Silence since the last check-in, never negative."""
    return max(_ZERO, ensure_utc(now) - ensure_utc(last_check_in_at))


def classify_elapsed(
    elapsed: timedelta, interval_hours: float, grace_hours: float
) -> SafetyLevel:
    """Map elapsed silence onto a level.

    ``elapsed < interval`` is SAFE, ``interval <= elapsed < interval + grace``
    is ATTENTION, anything longer is EMERGENCY.
    """
    interval = interval_duration(interval_hours)
    if elapsed < interval:
        return SafetyLevel.SAFE
    if elapsed < interval + timedelta(hours=grace_hours):
        return SafetyLevel.ATTENTION
    return SafetyLevel.EMERGENCY


def format_countdown(duration: timedelta) -> str:
    """Render a countdown for display.

    Floors to whole seconds and never shows a negative value.
    """
    total = duration.total_seconds()
    if math.isnan(total) or total < 1:
        return "DUE NOW"
    seconds = int(math.floor(total))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes:02d}m {secs:02d}s"
