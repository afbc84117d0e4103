"""
Synthetic Scenario: A Missed Morning Check-In
=============================================

This script walks through the AliveCheck safety switch using entirely
synthetic data and a synthetic clock.  No real person, phone number or
location is used.

Steps demonstrated:
  1. Load the switch policy from YAML
  2. Register a synthetic user with two guardians
  3. Tick through a normal day (SAFE)
  4. Miss the deadline (ATTENTION), then the grace margin (EMERGENCY)
  5. Dispatch once, with location denied, and show the fallback calls
  6. Cancel the emergency ("I am safe now")
  7. Export the event journal for review

Usage:
    python -m examples.synthetic_scenario
    # or: python examples/synthetic_scenario.py
"""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from alivecheck.capabilities import DeniedLocationProvider, StaticBatteryProvider
from alivecheck.config import SwitchPolicy, load_policy_from_yaml
from alivecheck.content import StaticContentProvider
from alivecheck.controller import SafetyController
from alivecheck.logging_utils import setup_logging
from alivecheck.models import Guardian
from alivecheck.store import InMemoryProfileStore
from alivecheck.sync import InMemorySyncChannel


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


async def run() -> None:
    _, log_path = setup_logging()
    print(f"Logging to {log_path}")

    # ------------------------------------------------------------------
    # Step 1: Load policy
    # ------------------------------------------------------------------
    _banner("Step 1: Load Switch Policy")

    sample_yaml = Path(__file__).parent / "switch_policy.yaml"
    if sample_yaml.exists():
        policy = load_policy_from_yaml(sample_yaml)
        print(f"Loaded policy from {sample_yaml.name}")
    else:
        policy = SwitchPolicy(grace_margin_hours=2)
        print("Created inline policy")
    print(f"  grace margin: {policy.grace_margin_hours}h")
    print(f"  emergency number: {policy.emergency_number}")

    # ------------------------------------------------------------------
    # Step 2: Register
    # ------------------------------------------------------------------
    _banner("Step 2: Register Synthetic User")

    t0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
    channel = InMemorySyncChannel()
    controller = SafetyController(
        InMemoryProfileStore(),
        policy=policy,
        channel=channel,
        location_provider=DeniedLocationProvider(),
        battery_provider=StaticBatteryProvider(41),
        content_provider=StaticContentProvider("Good morning. Stay hydrated."),
        clock=lambda: t0,
    )
    profile = controller.register(
        name="Synthetic User A",
        phone="+10000000000",
        guardians=[
            Guardian(name="Guardian One (synthetic)", phone="+10000000001", relation="Sibling"),
            Guardian(name="Guardian Two (synthetic)", phone="+10000000002", relation="Friend"),
        ],
        interval_hours=24,
        now=t0,
    )
    print(f"Registered {profile.name} (profile_id: {profile.profile_id})")
    print(f"  primary guardian: {profile.primary_guardian.name}")

    # ------------------------------------------------------------------
    # Step 3: Normal day
    # ------------------------------------------------------------------
    _banner("Step 3: Normal Day")

    for hours in (1, 12, 23):
        now = t0 + timedelta(hours=hours)
        episode = await controller.evaluate(now)
        snap = controller.snapshot(now)
        print(f"T+{hours:>2}h  level={episode.level.value:<9} countdown={snap.countdown}")

    # ------------------------------------------------------------------
    # Step 4: Deadline missed
    # ------------------------------------------------------------------
    _banner("Step 4: Deadline and Grace Margin Missed")

    for minutes in (24 * 60 + 5, 25 * 60, 26 * 60 + 10, 26 * 60 + 20):
        now = t0 + timedelta(minutes=minutes)
        episode = await controller.evaluate(now)
        print(
            f"T+{minutes // 60}h{minutes % 60:02d}m  level={episode.level.value:<9} "
            f"dispatched={episode.dispatched}"
        )

    # ------------------------------------------------------------------
    # Step 5: Dispatch outcome
    # ------------------------------------------------------------------
    _banner("Step 5: Dispatch Outcome")

    result = controller.last_dispatch
    print(f"Hand-offs published: {len(channel.published)}")
    if result is not None and result.payload is not None:
        print(json.dumps(result.payload.to_wire(), indent=2))
        print(f"Alert text: {result.alert_text}")
    snap = controller.snapshot(t0 + timedelta(hours=26, minutes=30))
    for action in snap.fallback_actions:
        print(f"  fallback: {action.label} -> {action.phone}")

    # ------------------------------------------------------------------
    # Step 6: Cancel
    # ------------------------------------------------------------------
    _banner("Step 6: 'I Am Safe Now'")

    episode = await controller.cancel_emergency(t0 + timedelta(hours=27))
    print(f"Level: {episode.level.value} ({episode.trigger_reason.value})")
    print(f"Advisory: {controller.last_advisory}")

    # ------------------------------------------------------------------
    # Step 7: Journal export
    # ------------------------------------------------------------------
    _banner("Step 7: Journal Export")

    export = controller.events.export_for_review(profile.profile_id)
    print(json.dumps(export["export_metadata"], indent=2))
    for entry in export["entries"]:
        print(f"  {entry['timestamp']}  {entry['event_type']}")

    _banner("Scenario Complete")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
