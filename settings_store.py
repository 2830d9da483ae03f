"""
Settings shared between the UI and the capture worker.

The UI is the only writer. Every change builds a new frozen Settings object and
swaps the reference, so the worker always reads a complete snapshot.
"""

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, replace

import config

logger = logging.getLogger(__name__)

PERSISTED_FIELDS = ("screen_width", "screen_height", "brightness_percent")


@dataclass(frozen=True)
class Settings:
    screen_width: int = config.DEFAULT_SCREEN_WIDTH
    screen_height: int = config.DEFAULT_SCREEN_HEIGHT
    brightness_percent: int = config.DEFAULT_BRIGHTNESS
    running: bool = True

    def to_json(self):
        data = asdict(self)
        return {key: data[key] for key in PERSISTED_FIELDS}


def default_settings_path():
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), config.SETTINGS_FILE)


def _positive_int(value):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _brightness(value):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return max(0, min(100, number))


_VALIDATORS = {
    "screen_width": _positive_int,
    "screen_height": _positive_int,
    "brightness_percent": _brightness,
}


def _validated(current, changes):
    """Return a copy of current with the valid changes applied."""
    accepted = {}
    for key, value in changes.items():
        validator = _VALIDATORS.get(key)
        if validator is None:
            raise KeyError(f"Unknown setting: {key}")
        checked = validator(value)
        if checked is None:
            logger.warning("[Config] Ignoring invalid %s=%r", key, value)
            continue
        accepted[key] = checked
    return replace(current, **accepted)


class SettingsStore:
    """Single-writer, multi-reader holder of the current Settings snapshot."""

    def __init__(self, path=None, settings=None):
        self.path = path or default_settings_path()
        self._settings = settings or Settings()
        self._write_lock = threading.Lock()

    def snapshot(self) -> Settings:
        return self._settings

    def load(self):
        """Load persisted values; a missing or broken file keeps the defaults."""
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info("[Config] No settings file at %s, using defaults", self.path)
            return self._settings
        except (OSError, ValueError) as e:
            logger.warning("[Config] Could not read %s: %s", self.path, e)
            return self._settings

        if not isinstance(data, dict):
            logger.warning("[Config] Unexpected settings document in %s", self.path)
            return self._settings

        known = {key: data[key] for key in PERSISTED_FIELDS if key in data}
        with self._write_lock:
            self._settings = _validated(self._settings, known)
        return self._settings

    def save(self):
        try:
            with open(self.path, "w") as f:
                json.dump(self._settings.to_json(), f, indent=2)
        except OSError as e:
            logger.warning("[Config] Could not save %s: %s", self.path, e)
            return False
        return True

    def update(self, **changes):
        """Apply validated changes and persist them."""
        with self._write_lock:
            self._settings = _validated(self._settings, changes)
            self.save()
        return self._settings

    def set_running(self, running):
        with self._write_lock:
            self._settings = replace(self._settings, running=bool(running))
        return self._settings

    def toggle_running(self):
        with self._write_lock:
            self._settings = replace(self._settings, running=not self._settings.running)
        logger.info("[Config] Ambilight %s", "ON" if self._settings.running else "OFF")
        return self._settings
