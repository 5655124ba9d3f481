"""
Settings Store
==============

Persisted supervisor configuration: a versioned JSON document holding the
ordered array of application records and the startup application.

    {
      "version": 1,
      "startupApplication": "codes.eeems.oxide",
      "applications": [ {"name": ..., "bin": ..., ...}, ... ]
    }

Writes are skipped when the serialised document would not change.
"""

from __future__ import annotations

import json
import os
import tempfile
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from oxide_supervisor.errors import ConfigurationError

logger = logging.getLogger(__name__)

SETTINGS_VERSION = 1

# from_version -> transformation producing the from_version + 1 document
Migration = Callable[[Dict[str, Any]], Dict[str, Any]]
MIGRATIONS: Dict[int, Migration] = {}


def migrate(
    data: Dict[str, Any],
    from_version: int,
    migrations: Optional[Dict[int, Migration]] = None,
    target_version: int = SETTINGS_VERSION,
) -> Dict[str, Any]:
    """
    Bring a settings document forward to target_version.

    Raises ConfigurationError for versions newer than target_version and for
    any step that has no registered migration.
    """
    steps = MIGRATIONS if migrations is None else migrations
    if from_version > target_version:
        raise ConfigurationError(
            f"Settings version {from_version} is newer than supported version {target_version}"
        )
    version = from_version
    while version < target_version:
        step = steps.get(version)
        if step is None:
            raise ConfigurationError(f"No settings migration from version {version} to {version + 1}")
        logger.info(f"Migrating settings from version {version} to {version + 1}")
        data = step(dict(data))
        version += 1
    data["version"] = target_version
    return data


def _empty_document() -> Dict[str, Any]:
    return {
        "version": SETTINGS_VERSION,
        "startupApplication": None,
        "applications": [],
    }


class SettingsStore:
    """JSON-file backed settings with version gating."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: Dict[str, Any] = _empty_document()
        self._last_payload: Optional[str] = None
        self.write_count = 0
        self.migrated = False

    def load(self) -> None:
        """
        Read the settings file from disk.

        A missing file yields an empty document. Raises ConfigurationError if
        the file is unreadable or its version cannot be migrated.
        """
        if not self.path.exists():
            logger.info(f"No settings at {self.path}, starting empty")
            self._data = _empty_document()
            self._last_payload = None
            return

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Unable to read settings {self.path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Settings root must be an object: {self.path}")

        version = raw.get("version", SETTINGS_VERSION)
        if isinstance(version, bool) or not isinstance(version, int):
            raise ConfigurationError(f"Invalid settings version {version!r}")

        self._last_payload = self._serialise(raw)
        if version != SETTINGS_VERSION:
            raw = migrate(raw, version)
            self.migrated = True

        data = _empty_document()
        data.update(raw)
        if not isinstance(data.get("applications"), list):
            logger.warning("Settings 'applications' is not a list, ignoring it")
            data["applications"] = []
        self._data = data
        logger.debug(f"Loaded {len(data['applications'])} application records")

    sync = load

    # ─────────────────────────────────────────────────────────────────
    # Accessors
    # ─────────────────────────────────────────────────────────────────

    @property
    def version(self) -> int:
        return self._data["version"]

    def records(self) -> List[Dict[str, Any]]:
        """Snapshot of the application records that are objects."""
        return [dict(r) for r in self._data["applications"] if isinstance(r, dict)]

    @property
    def startup_application(self) -> Optional[str]:
        return self._data.get("startupApplication")

    def set_startup_application(self, name: Optional[str]) -> bool:
        self._data["startupApplication"] = name
        return self.flush()

    def write_applications(self, records: List[Dict[str, Any]]) -> bool:
        """Replace the application array and persist. Returns True if written."""
        self._data["applications"] = [dict(r) for r in records]
        return self.flush()

    # ─────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────

    def flush(self) -> bool:
        """Write the document unless it matches what is on disk."""
        payload = self._serialise(self._data)
        if payload == self._last_payload:
            return False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self._last_payload = payload
        self.write_count += 1
        logger.debug(f"Settings written to {self.path}")
        return True

    @staticmethod
    def _serialise(data: Dict[str, Any]) -> str:
        return json.dumps(data, indent=2)
