from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from enum import Enum

from sqlmodel import SQLModel, Field


class WebhookOutcome(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"
    CIRCUIT_OPEN = "circuit_open"


class CaptureRecord(SQLModel, table=True):
    __tablename__ = "capture_records"

    id: Optional[int] = Field(default=None, primary_key=True)

    session_id: str = Field(index=True)
    capture_number: int
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    mode: str = "checkin"
    screenshot_path: Optional[str] = None
    description: str = ""

    # ALARM or CHECKIN
    event_type: str = Field(index=True)
    alarm_triggered: bool = False

    # Webhook delivery
    webhook_outcome: str = WebhookOutcome.SKIPPED.value
    webhook_http_status: Optional[int] = None
    webhook_error: Optional[str] = None
    webhook_attempts: int = 0
