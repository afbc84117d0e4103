"""
Profile Store -- the single durable home of the user's profile.

The rest of the package never touches storage directly; it goes through
``load()``, ``save()`` and ``reset()``.  One active session per device is
assumed, so ``save`` is last-write-wins.  Any failure to read or write
surfaces as ``ProfileStoreUnavailableError`` so callers can hold their last
known state instead of acting on incomplete data.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from alivecheck.models import Profile

logger = logging.getLogger(__name__)


class ProfileStoreUnavailableError(Exception):
    """Raised when the backing store cannot be read or written."""
    pass


class ProfileStore:
    """Interface implemented by every profile backend."""

    def load(self) -> Optional[Profile]:
        """Return the stored profile, or None if nobody registered yet."""
        raise NotImplementedError

    def save(self, profile: Profile) -> None:
        raise NotImplementedError

    def reset(self) -> None:
        """Destroy the stored profile.  Irreversible."""
        raise NotImplementedError


class InMemoryProfileStore(ProfileStore):
    """Process-local store.  Set ``available = False`` to simulate an outage."""

    def __init__(self, profile: Optional[Profile] = None) -> None:
        self._profile = profile.model_copy(deep=True) if profile else None
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise ProfileStoreUnavailableError("In-memory profile store marked unavailable.")

    def load(self) -> Optional[Profile]:
        self._check()
        return self._profile.model_copy(deep=True) if self._profile else None

    def save(self, profile: Profile) -> None:
        self._check()
        self._profile = profile.model_copy(deep=True)

    def reset(self) -> None:
        self._check()
        self._profile = None


class JsonFileProfileStore(ProfileStore):
    """One JSON document on disk, replaced atomically on every save.

    Fields the current model does not know are ignored on load; config flags
    missing from older records take their defaults.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[Profile]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
            return Profile.model_validate(data)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise ProfileStoreUnavailableError(
                f"Cannot read profile from {self.path}: {exc}"
            ) from exc

    def save(self, profile: Profile) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=".profile-", suffix=".json", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(profile.model_dump_json(indent=2))
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            raise ProfileStoreUnavailableError(
                f"Cannot write profile to {self.path}: {exc}"
            ) from exc
        logger.debug("Saved profile %s to %s", profile.profile_id, self.path)

    def reset(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise ProfileStoreUnavailableError(
                f"Cannot delete profile at {self.path}: {exc}"
            ) from exc
        logger.info("Profile store at %s reset", self.path)
