from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from narrator.llm.client import describe_screenshot
from narrator.models.schemas import CaptureMode, DeliveryResult, EventType, NotificationEvent
from narrator.pipeline.capture import ScreenGrabber, SessionFiles, play_alarm, speak
from narrator.pipeline.notifier import WebhookNotifier
from narrator.storage import repository
from narrator.storage.database import get_session_factory
from narrator.storage.settings_store import SettingsStore

logger = structlog.get_logger()

AlarmHook = Callable[[NotificationEvent], Awaitable[None]]


@dataclass(frozen=True)
class CycleOutcome:
    event: NotificationEvent
    delivery: DeliveryResult


def classify_event(
    description: str,
    mode: CaptureMode,
    marker: str = "ALARM:",
    keywords: list[str] | None = None,
) -> EventType:
    """ALARM only in notification mode, when the model flagged the watched condition."""
    if mode != CaptureMode.NOTIFICATION:
        return EventType.CHECKIN
    text = description.strip()
    if marker and text.upper().startswith(marker.upper()):
        return EventType.ALARM
    lowered = text.lower()
    if any(k.lower() in lowered for k in (keywords or []) if k):
        return EventType.ALARM
    return EventType.CHECKIN


def strip_marker(description: str, marker: str) -> str:
    text = description.strip()
    if marker and text.upper().startswith(marker.upper()):
        return text[len(marker):].strip()
    return text


class CaptureLoop:
    """Periodic capture → describe → speak/alarm/webhook → record cycle.

    At most one cycle runs at a time. A timer tick that arrives while a cycle
    is still running is skipped, not queued. Stopping the loop only prevents
    the next cycle; a cycle in flight runs to completion.
    """

    def __init__(
        self,
        store: SettingsStore,
        notifier: WebhookNotifier,
        sessions_dir: str = "sessions",
        session_id: str | None = None,
        grabber: ScreenGrabber | None = None,
        describe=describe_screenshot,
        speak_fn=speak,
        alarm_fn=play_alarm,
        on_alarm: AlarmHook | None = None,
        session_factory=None,
        alarm_marker: str = "ALARM:",
        alarm_keywords: list[str] | None = None,
        history_context: int = 3,
    ):
        self.store = store
        self.notifier = notifier
        self.session_id = session_id or str(uuid.uuid4())
        self.files = SessionFiles(sessions_dir, self.session_id)
        self.grabber = grabber or ScreenGrabber(self.files)
        self._describe = describe
        self._speak = speak_fn
        self._alarm = alarm_fn
        self._on_alarm = on_alarm
        self._session_factory = session_factory
        self.alarm_marker = alarm_marker
        self.alarm_keywords = alarm_keywords or []
        self.history_context = history_context

        self.capture_count = 0
        self.history: list[dict] = []
        self.last_outcome: CycleOutcome | None = None
        self._busy = False
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def start(self) -> bool:
        if self.running:
            logger.info("capture_loop_already_running")
            return False
        self._timer = asyncio.create_task(self._tick_forever())
        logger.info(
            "capture_loop_started",
            session_id=self.session_id,
            interval_ms=self.store.get_capture_frequency().interval_ms,
        )
        return True

    async def stop(self) -> bool:
        if not self.running:
            return False
        self._timer.cancel()
        try:
            await self._timer
        except asyncio.CancelledError:
            pass
        self._timer = None
        logger.info("capture_loop_stopped", session_id=self.session_id)
        return True

    async def drain(self) -> None:
        """Wait for in-flight cycles and alarm tasks to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _tick_forever(self) -> None:
        while True:
            self._spawn(self.run_cycle())
            # Re-read every tick so a frequency change applies to the next wait
            interval_ms = self.store.get_capture_frequency().interval_ms
            await asyncio.sleep(interval_ms / 1000)

    async def run_cycle(self) -> CycleOutcome | None:
        if self._busy:
            logger.info("capture_skipped_busy", session_id=self.session_id)
            return None

        self._busy = True
        try:
            return await self._cycle()
        except Exception as e:
            logger.exception("capture_cycle_failed", session_id=self.session_id, error=str(e))
            return None
        finally:
            self._busy = False

    async def _cycle(self) -> CycleOutcome | None:
        self.capture_count += 1
        capture_number = self.capture_count
        log = logger.bind(session_id=self.session_id, capture_number=capture_number)
        log.info("capture_started")

        shot = await self.grabber.capture(capture_number)
        if shot is None:
            log.error("capture_aborted", reason="screenshot_failed")
            return None

        mode = self.store.get_mode()
        description = await self._describe(
            shot.path,
            history=self.history[-self.history_context:],
            mode=mode.value,
            watch_for=self.store.get_watch_for(),
            alarm_marker=self.alarm_marker,
        )
        if not description:
            log.error("capture_aborted", reason="description_failed")
            return None

        event_type = classify_event(description, mode, self.alarm_marker, self.alarm_keywords)
        event = NotificationEvent(
            event_type=event_type,
            description=strip_marker(description, self.alarm_marker),
            screenshot_path=shot.path,
            capture_number=capture_number,
            session_id=self.session_id,
            event_timestamp=datetime.now(timezone.utc),
            mode=mode,
        )

        self.history.append({"capture_number": capture_number, "description": event.description})
        self.files.append_description(capture_number, event.event_timestamp, event.description)
        log.info("capture_described", event_type=event_type.value, description=event.description[:200])

        if event_type == EventType.ALARM:
            log.warning("alarm_triggered")
            self._fire_alarm(event)

        try:
            await self._speak(event.description)
        except (RuntimeError, OSError) as e:
            log.error("tts_failed", error=str(e)[:200])

        # Settings are re-read per delivery so config updates apply between cycles
        delivery = await self.notifier.deliver(event_type, event, self.store.get_webhook())

        await self._record(event, delivery)
        outcome = CycleOutcome(event=event, delivery=delivery)
        self.last_outcome = outcome
        log.info(
            "capture_complete",
            event_type=event_type.value,
            webhook_success=delivery.success,
            webhook_silent=delivery.silent,
        )
        return outcome

    def _fire_alarm(self, event: NotificationEvent) -> None:
        """Start alarm side effects without waiting for them."""
        if self.store.alarm_sound_enabled():
            self._spawn(self._alarm())
        if self._on_alarm is not None:
            self._spawn(self._on_alarm(event))

    async def _record(self, event: NotificationEvent, delivery: DeliveryResult) -> None:
        try:
            factory = self._session_factory or get_session_factory()
            async with factory() as session:
                await repository.create_capture(session, event, delivery)
        except SQLAlchemyError as e:
            logger.error("capture_record_failed", capture_number=event.capture_number, error=str(e)[:200])

    def status(self) -> dict:
        last = self.last_outcome
        return {
            "session_id": self.session_id,
            "running": self.running,
            "busy": self._busy,
            "capture_count": self.capture_count,
            "mode": self.store.get_mode().value,
            "interval_ms": self.store.get_capture_frequency().interval_ms,
            "last_capture": None if last is None else {
                "capture_number": last.event.capture_number,
                "event_type": last.event.event_type.value,
                "description": last.event.description,
                "timestamp": last.event.event_timestamp.isoformat(),
                "webhook_success": last.delivery.success,
                "webhook_reason": last.delivery.reason,
            },
        }
