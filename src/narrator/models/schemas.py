from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    ALARM = "ALARM"
    CHECKIN = "CHECKIN"


class CaptureMode(str, Enum):
    CHECKIN = "checkin"
    NOTIFICATION = "notification"


class ErrorKind(str, Enum):
    TIMEOUT = "Timeout"
    CONNECTION_REFUSED = "ConnectionRefused"
    DNS_FAILURE = "DnsFailure"
    HTTP_ERROR = "HttpError"
    NETWORK_ERROR = "NetworkError"
    INVALID_CONFIG = "InvalidConfig"


class WebhookConfig(BaseModel):
    """Webhook block of the user settings file.

    Field aliases match the keys persisted in ``user-settings.json``.
    """

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    url: str | None = ""
    send_on_alarm: bool = Field(True, alias="sendOnAlarm")
    send_on_checkin: bool = Field(False, alias="sendOnCheckin")
    timeout_ms: int = Field(5000, ge=0, alias="timeout")
    max_retries: int = Field(3, ge=1, alias="retries")

    def sends(self, event_type: EventType) -> bool:
        if event_type == EventType.ALARM:
            return self.send_on_alarm
        return self.send_on_checkin


class WebhookConfigUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool | None = None
    url: str | None = None
    send_on_alarm: bool | None = Field(None, alias="sendOnAlarm")
    send_on_checkin: bool | None = Field(None, alias="sendOnCheckin")
    timeout_ms: int | None = Field(None, ge=0, alias="timeout")
    max_retries: int | None = Field(None, ge=1, alias="retries")

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str | None) -> str | None:
        """Blank clears the URL; anything else must be an absolute http(s) URL."""
        from narrator.pipeline.sender import validate_url

        if value is None or not value.strip():
            return value
        if validate_url(value) is None:
            raise ValueError("url must be an absolute http or https URL")
        return value.strip()


class NotificationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: EventType
    description: str
    screenshot_path: str | None = None
    capture_number: int
    session_id: str
    event_timestamp: datetime
    mode: CaptureMode = CaptureMode.CHECKIN

    def to_payload(self) -> dict[str, Any]:
        """Body posted to the webhook endpoint."""
        return {
            "eventType": self.event_type.value,
            "data": {
                "description": self.description,
                "screenshotPath": self.screenshot_path,
                "captureNumber": self.capture_number,
                "sessionId": self.session_id,
                "eventTimestamp": self.event_timestamp.isoformat(),
                "mode": self.mode.value,
            },
        }


class DeliveryResult(BaseModel):
    success: bool
    http_status: int | None = None
    error_kind: ErrorKind | None = None
    retryable: bool = False
    silent: bool = False
    circuit_breaker_open: bool = False
    reason: str | None = None
    attempts: int = 0
    response: Any = None

    @classmethod
    def silent_failure(cls, reason: str, circuit_breaker_open: bool = False) -> DeliveryResult:
        return cls(
            success=False,
            silent=True,
            reason=reason,
            circuit_breaker_open=circuit_breaker_open,
        )


class WebhookHealth(BaseModel):
    status: str
    message: str
    details: dict[str, Any] = {}


class CaptureFrequencyUpdate(BaseModel):
    value: float = Field(gt=0)
    unit: str


class CaptureModeUpdate(BaseModel):
    mode: CaptureMode
    watch_for: str | None = None


class AlarmSoundUpdate(BaseModel):
    enabled: bool


class WebhookTestRequest(BaseModel):
    event_type: EventType = EventType.CHECKIN
    description: str = "Test event from Screen Narrator"


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    captures_total: int = 0
    captures_today: int = 0
    webhook_status: str = "disabled"
