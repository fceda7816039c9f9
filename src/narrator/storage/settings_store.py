from __future__ import annotations

import json
import threading
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from narrator.models.schemas import CaptureMode, WebhookConfig, WebhookConfigUpdate

logger = structlog.get_logger()

MIN_INTERVAL_MS = 10 * 1000
MAX_INTERVAL_MS = 7 * 24 * 60 * 60 * 1000

UNIT_MS = {
    "seconds": 1000,
    "minutes": 60 * 1000,
    "hours": 60 * 60 * 1000,
    "days": 24 * 60 * 60 * 1000,
}


class CaptureFrequency(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    value: float = 5
    unit: str = "minutes"
    interval_ms: int = Field(5 * 60 * 1000, alias="intervalMs")


class AlarmSound(BaseModel):
    enabled: bool = True


class UserSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    capture_frequency: CaptureFrequency = Field(default_factory=CaptureFrequency, alias="captureFrequency")
    last_used_mode: CaptureMode = Field(CaptureMode.CHECKIN, alias="lastUsedMode")
    watch_for: str | None = Field(None, alias="watchFor")
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    alarm_sound: AlarmSound = Field(default_factory=AlarmSound, alias="alarmSound")


def clamp_interval_ms(interval_ms: float) -> int:
    return int(min(max(interval_ms, MIN_INTERVAL_MS), MAX_INTERVAL_MS))


class SettingsStore:
    """User settings persisted as JSON, merged over defaults on load.

    Every getter returns a copy so callers never hold live references.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._settings = self._load()

    def _load(self) -> UserSettings:
        if not self.path.exists():
            return UserSettings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            defaults = UserSettings().model_dump(by_alias=True, mode="json")
            # Nested blocks are merged so that a partial block keeps its other defaults
            for key, value in raw.items():
                if isinstance(value, dict) and isinstance(defaults.get(key), dict):
                    defaults[key] = {**defaults[key], **value}
                else:
                    defaults[key] = value
            return UserSettings.model_validate(defaults)
        except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
            logger.warning("settings_load_failed", path=str(self.path), error=str(e)[:200])
            return UserSettings()

    def _save(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(self._settings.model_dump(by_alias=True, mode="json"), indent=2),
                encoding="utf-8",
            )
            return True
        except OSError as e:
            logger.error("settings_save_failed", path=str(self.path), error=str(e))
            return False

    def get_all(self) -> UserSettings:
        with self._lock:
            return self._settings.model_copy(deep=True)

    def get_webhook(self) -> WebhookConfig:
        with self._lock:
            return self._settings.webhook.model_copy()

    def update_webhook(self, update: WebhookConfigUpdate) -> WebhookConfig:
        changes = update.model_dump(exclude_none=True)
        with self._lock:
            merged = self._settings.webhook.model_copy(update=changes)
            self._settings.webhook = WebhookConfig.model_validate(merged.model_dump())
            self._save()
            return self._settings.webhook.model_copy()

    def get_capture_frequency(self) -> CaptureFrequency:
        with self._lock:
            return self._settings.capture_frequency.model_copy()

    def set_capture_frequency(self, value: float, unit: str) -> CaptureFrequency:
        if unit not in UNIT_MS:
            raise ValueError(f"Invalid frequency unit: {unit}")
        interval_ms = clamp_interval_ms(value * UNIT_MS[unit])
        with self._lock:
            self._settings.capture_frequency = CaptureFrequency(
                value=value,
                unit=unit,
                interval_ms=interval_ms,
            )
            self._save()
            return self._settings.capture_frequency.model_copy()

    def get_mode(self) -> CaptureMode:
        with self._lock:
            return self._settings.last_used_mode

    def get_watch_for(self) -> str | None:
        with self._lock:
            return self._settings.watch_for

    def set_mode(self, mode: CaptureMode, watch_for: str | None = None) -> None:
        with self._lock:
            self._settings.last_used_mode = CaptureMode(mode)
            if watch_for is not None:
                self._settings.watch_for = watch_for
            self._save()

    def alarm_sound_enabled(self) -> bool:
        with self._lock:
            return self._settings.alarm_sound.enabled

    def set_alarm_sound_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._settings.alarm_sound.enabled = enabled
            self._save()

    def reset_to_defaults(self) -> UserSettings:
        with self._lock:
            self._settings = UserSettings()
            self._save()
            return self._settings.model_copy(deep=True)
