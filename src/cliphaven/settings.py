"""User settings consumed by the history engine and sync.

Every setter writes the file through and applies its side effect in the same
call, so callers never depend on change notifications.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from cliphaven.config import DEFAULT_MAX_HISTORY, SETTINGS_PATH
from cliphaven.history import HistoryStore

logger = logging.getLogger(__name__)

SETTINGS_FORMAT_VERSION = 1


class SettingsFormatError(ValueError):
    """Raised when imported settings data cannot be decoded."""


class Settings:
    def __init__(self, path: str | Path | None = None, history: HistoryStore | None = None):
        self._path = Path(path) if path else SETTINGS_PATH
        self._history = history
        self.max_history_size = DEFAULT_MAX_HISTORY
        self.protect_passwords = True
        self.excluded_apps: list[str] = []
        self.auto_expire_hours = 0
        self.sync_enabled = False
        self.play_sounds = False
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def attach_history(self, history: HistoryStore) -> None:
        self._history = history
        history.set_max_size(self.max_history_size)

    def is_app_excluded(self, bundle_id: str | None) -> bool:
        if bundle_id is None:
            return False
        return bundle_id in self.excluded_apps

    def set_max_history_size(self, value: int) -> None:
        self.max_history_size = max(1, int(value))
        self.save()
        if self._history is not None:
            self._history.set_max_size(self.max_history_size)

    def set_protect_passwords(self, value: bool) -> None:
        self.protect_passwords = bool(value)
        self.save()

    def set_auto_expire_hours(self, value: int) -> None:
        self.auto_expire_hours = max(0, int(value))
        self.save()
        if self._history is not None:
            self._history.expire(self.auto_expire_hours)

    def set_sync_enabled(self, value: bool) -> None:
        self.sync_enabled = bool(value)
        self.save()

    def set_play_sounds(self, value: bool) -> None:
        self.play_sounds = bool(value)
        self.save()

    def add_excluded_app(self, bundle_id: str) -> None:
        if bundle_id not in self.excluded_apps:
            self.excluded_apps.append(bundle_id)
            self.save()

    def remove_excluded_app(self, bundle_id: str) -> None:
        if bundle_id in self.excluded_apps:
            self.excluded_apps = [b for b in self.excluded_apps if b != bundle_id]
            self.save()

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SETTINGS_FORMAT_VERSION,
            "maxHistorySize": self.max_history_size,
            "protectPasswords": self.protect_passwords,
            "excludedApps": list(self.excluded_apps),
            "autoExpireHours": self.auto_expire_hours,
            "syncEnabled": self.sync_enabled,
            "playSounds": self.play_sounds,
        }

    def export_settings(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def import_settings(self, data: str | bytes) -> None:
        """Apply every recognised key present in exported settings data.

        Raises:
            SettingsFormatError: If the data is not a JSON object.
        """
        try:
            values = json.loads(data)
        except ValueError as exc:
            raise SettingsFormatError("Could not decode settings") from exc
        if not isinstance(values, dict):
            raise SettingsFormatError("Invalid settings file format")

        self._apply(values)
        self.save()
        if self._history is not None:
            self._history.set_max_size(self.max_history_size)

    def save(self) -> bool:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError:
            logger.exception("Failed to save settings to %s", self._path)
            return False
        return True

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            values = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("Failed to load settings from %s, using defaults", self._path)
            return
        if isinstance(values, dict):
            self._apply(values)

    def _apply(self, values: dict[str, Any]) -> None:
        # bool is an int subclass, so check it first for the int-valued keys
        value = values.get("maxHistorySize")
        if isinstance(value, int) and not isinstance(value, bool):
            self.max_history_size = max(1, value)
        value = values.get("protectPasswords")
        if isinstance(value, bool):
            self.protect_passwords = value
        value = values.get("excludedApps")
        if isinstance(value, list):
            self.excluded_apps = [str(v) for v in value]
        value = values.get("autoExpireHours")
        if isinstance(value, int) and not isinstance(value, bool):
            self.auto_expire_hours = max(0, value)
        value = values.get("syncEnabled")
        if isinstance(value, bool):
            self.sync_enabled = value
        value = values.get("playSounds")
        if isinstance(value, bool):
            self.play_sounds = value
