from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, func

from narrator.models.db import CaptureRecord, WebhookOutcome
from narrator.models.schemas import DeliveryResult, EventType, NotificationEvent


def outcome_for(result: DeliveryResult) -> WebhookOutcome:
    if result.success:
        return WebhookOutcome.DELIVERED
    if result.circuit_breaker_open:
        return WebhookOutcome.CIRCUIT_OPEN
    if result.silent:
        return WebhookOutcome.SKIPPED
    return WebhookOutcome.FAILED


async def create_capture(
    session: AsyncSession,
    event: NotificationEvent,
    result: DeliveryResult,
) -> CaptureRecord:
    record = CaptureRecord(
        session_id=event.session_id,
        capture_number=event.capture_number,
        captured_at=event.event_timestamp,
        mode=event.mode.value,
        screenshot_path=event.screenshot_path,
        description=event.description,
        event_type=event.event_type.value,
        alarm_triggered=event.event_type == EventType.ALARM,
        webhook_outcome=outcome_for(result).value,
        webhook_http_status=result.http_status,
        webhook_error=result.error_kind.value if result.error_kind else result.reason,
        webhook_attempts=result.attempts,
    )
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def get_capture(session: AsyncSession, record_id: int) -> CaptureRecord | None:
    return await session.get(CaptureRecord, record_id)


async def get_captures_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(CaptureRecord.id)))
    return result.scalar_one()


async def get_captures_today_count(session: AsyncSession) -> int:
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    result = await session.execute(
        select(func.count(CaptureRecord.id)).where(
            func.date(CaptureRecord.captured_at) == today
        )
    )
    return result.scalar_one()


async def list_recent_captures(
    session: AsyncSession,
    limit: int = 50,
    session_id: str | None = None,
) -> list[CaptureRecord]:
    query = select(CaptureRecord)
    if session_id:
        query = query.where(CaptureRecord.session_id == session_id)
    query = query.order_by(CaptureRecord.id.desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def list_sessions(session: AsyncSession) -> list[dict]:
    """Sessions with capture and alarm counts, newest first."""
    result = await session.execute(
        select(
            CaptureRecord.session_id,
            func.count(CaptureRecord.id),
            func.sum(case((CaptureRecord.alarm_triggered == True, 1), else_=0)),  # noqa: E712
            func.min(CaptureRecord.captured_at),
            func.max(CaptureRecord.captured_at),
        )
        .group_by(CaptureRecord.session_id)
        .order_by(func.max(CaptureRecord.captured_at).desc())
    )
    return [
        {
            "session_id": session_id,
            "capture_count": count,
            "alarm_count": int(alarms or 0),
            "started_at": started,
            "last_capture_at": last,
        }
        for session_id, count, alarms, started, last in result.all()
    ]
