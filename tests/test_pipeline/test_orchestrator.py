from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from sqlmodel import select

from narrator.models.db import CaptureRecord, WebhookOutcome
from narrator.models.schemas import (
    CaptureMode,
    DeliveryResult,
    ErrorKind,
    EventType,
    WebhookConfigUpdate,
)
from narrator.pipeline.breaker import CircuitBreaker
from narrator.pipeline import capture
from narrator.pipeline.capture import Screenshot
from narrator.pipeline.notifier import WebhookNotifier
from narrator.pipeline.orchestrator import CaptureLoop, classify_event, strip_marker


class FakeGrabber:
    def __init__(self, tmp_path: Path, fail: bool = False):
        self.tmp_path = tmp_path
        self.fail = fail
        self.calls = 0

    async def capture(self, capture_number: int) -> Screenshot | None:
        self.calls += 1
        if self.fail:
            return None
        path = self.tmp_path / f"capture_{capture_number:03d}.png"
        path.write_bytes(b"\x89PNG fake")
        return Screenshot(path=str(path), filename=path.name, capture_number=capture_number)


def _ok():
    return DeliveryResult(success=True, http_status=200, attempts=1)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(clock=clock)


@pytest.fixture
def make_loop(tmp_path, store, breaker, sleeper, session_factory):
    def _make(send, describe=None, speak=None, alarm=None, grabber=None, **kwargs):
        notifier = WebhookNotifier(breaker, send=send, sleep=sleeper)
        return CaptureLoop(
            store,
            notifier,
            sessions_dir=str(tmp_path / "sessions"),
            session_id="session-test",
            grabber=grabber or FakeGrabber(tmp_path),
            describe=describe or AsyncMock(return_value="A code editor with a Python file open."),
            speak_fn=speak or AsyncMock(),
            alarm_fn=alarm or AsyncMock(),
            session_factory=session_factory,
            **kwargs,
        )
    return _make


def _enable_webhook(store, **overrides):
    values = {"enabled": True, "url": "http://hooks.example.test/narrator", "send_on_checkin": True}
    values.update(overrides)
    store.update_webhook(WebhookConfigUpdate(**values))


class TestClassifyEvent:
    def test_checkin_mode_never_alarms(self):
        assert classify_event("ALARM: fire", CaptureMode.CHECKIN) == EventType.CHECKIN

    def test_marker_in_notification_mode(self):
        assert classify_event("  alarm: the download finished", CaptureMode.NOTIFICATION) == EventType.ALARM
        assert classify_event("The download is at 40%", CaptureMode.NOTIFICATION) == EventType.CHECKIN

    def test_keywords(self):
        assert classify_event("Your turn is next", CaptureMode.NOTIFICATION, keywords=["your turn"]) == EventType.ALARM

    def test_strip_marker(self):
        assert strip_marker("ALARM: The build failed", "ALARM:") == "The build failed"
        assert strip_marker("Nothing happening", "ALARM:") == "Nothing happening"


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_checkin_cycle_records_and_speaks(self, make_loop, scripted_sender, store, session, tmp_path):
        speak = AsyncMock()
        send = scripted_sender(_ok())
        loop = make_loop(send, speak=speak)

        outcome = await loop.run_cycle()

        assert outcome is not None
        assert outcome.event.event_type == EventType.CHECKIN
        assert outcome.event.capture_number == 1
        # Webhook disabled by default
        assert outcome.delivery.silent is True
        assert send.calls == []
        speak.assert_awaited_once_with("A code editor with a Python file open.")

        descriptions = (tmp_path / "sessions" / "session-test" / "descriptions.txt").read_text()
        assert "Capture 1" in descriptions
        assert "A code editor with a Python file open." in descriptions

        records = (await session.execute(select(CaptureRecord))).scalars().all()
        assert len(records) == 1
        assert records[0].event_type == "CHECKIN"
        assert records[0].webhook_outcome == WebhookOutcome.SKIPPED.value

    @pytest.mark.asyncio
    async def test_history_is_passed_as_context(self, make_loop, scripted_sender):
        describe = AsyncMock(side_effect=["first", "second", "third", "fourth", "fifth"])
        loop = make_loop(scripted_sender(_ok()), describe=describe)

        for _ in range(5):
            await loop.run_cycle()

        history = describe.await_args.kwargs["history"]
        assert [h["capture_number"] for h in history] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_alarm_does_not_wait_for_sound(self, make_loop, scripted_sender, store):
        store.set_mode(CaptureMode.NOTIFICATION, watch_for="a red build badge")
        _enable_webhook(store)
        release = asyncio.Event()
        sound_started = asyncio.Event()

        async def slow_alarm():
            sound_started.set()
            await release.wait()

        send = scripted_sender(_ok())
        loop = make_loop(
            send,
            describe=AsyncMock(return_value="ALARM: The build badge is red."),
            alarm=slow_alarm,
        )

        outcome = await loop.run_cycle()
        await asyncio.sleep(0)

        assert outcome.event.event_type == EventType.ALARM
        assert outcome.event.description == "The build badge is red."
        assert outcome.delivery.success is True
        assert send.calls[0][1]["eventType"] == "ALARM"
        # The cycle finished while the alarm sound is still playing
        assert sound_started.is_set()
        assert not release.is_set()

        release.set()
        await loop.drain()

    @pytest.mark.asyncio
    async def test_alarm_sound_respects_setting(self, make_loop, scripted_sender, store):
        store.set_mode(CaptureMode.NOTIFICATION)
        store.set_alarm_sound_enabled(False)
        alarm = AsyncMock()
        on_alarm = AsyncMock()
        loop = make_loop(
            scripted_sender(_ok()),
            describe=AsyncMock(return_value="ALARM: Queue position is 3"),
            alarm=alarm,
            on_alarm=on_alarm,
        )

        await loop.run_cycle()
        await loop.drain()

        alarm.assert_not_awaited()
        on_alarm.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_busy_cycle_skips_new_tick(self, make_loop, scripted_sender, tmp_path):
        gate = asyncio.Event()
        grabber = FakeGrabber(tmp_path)

        async def blocking_describe(path, **kwargs):
            await gate.wait()
            return "Slow description"

        loop = make_loop(scripted_sender(_ok()), describe=blocking_describe, grabber=grabber)

        first = asyncio.create_task(loop.run_cycle())
        await asyncio.sleep(0)
        assert loop.busy is True

        skipped = await loop.run_cycle()
        assert skipped is None
        assert grabber.calls == 1

        gate.set()
        outcome = await first
        assert outcome is not None
        assert loop.busy is False

    @pytest.mark.asyncio
    async def test_screenshot_failure_ends_cycle(self, make_loop, scripted_sender, tmp_path):
        send = scripted_sender(_ok())
        describe = AsyncMock()
        loop = make_loop(send, describe=describe, grabber=FakeGrabber(tmp_path, fail=True))

        assert await loop.run_cycle() is None
        describe.assert_not_awaited()
        assert loop.busy is False

    @pytest.mark.asyncio
    async def test_empty_description_ends_cycle(self, make_loop, scripted_sender, store):
        _enable_webhook(store)
        send = scripted_sender(_ok())
        loop = make_loop(send, describe=AsyncMock(return_value=None))

        assert await loop.run_cycle() is None
        assert send.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, make_loop, scripted_sender):
        loop = make_loop(scripted_sender(_ok()), describe=AsyncMock(side_effect=KeyError("boom")))

        assert await loop.run_cycle() is None
        assert loop.busy is False

    @pytest.mark.asyncio
    async def test_tts_failure_does_not_stop_webhook(self, make_loop, scripted_sender, store):
        _enable_webhook(store)
        send = scripted_sender(_ok())
        loop = make_loop(send, speak=AsyncMock(side_effect=RuntimeError("no voice")))

        outcome = await loop.run_cycle()

        assert outcome.delivery.success is True
        assert len(send.calls) == 1

    @pytest.mark.asyncio
    async def test_unlaunchable_tts_binary_does_not_stop_webhook(
        self, make_loop, scripted_sender, store, session, monkeypatch
    ):
        async def not_executable(*args, **kwargs):
            raise PermissionError(13, "Permission denied", "espeak")

        monkeypatch.setattr(capture, "_speech_command", lambda text: ["espeak", text])
        monkeypatch.setattr(capture.asyncio, "create_subprocess_exec", not_executable)
        _enable_webhook(store)
        send = scripted_sender(_ok())
        loop = make_loop(send, speak=capture.speak)

        outcome = await loop.run_cycle()

        assert outcome is not None
        assert outcome.delivery.success is True
        assert len(send.calls) == 1
        record = (await session.execute(select(CaptureRecord))).scalars().one()
        assert record.webhook_outcome == WebhookOutcome.DELIVERED.value

    @pytest.mark.asyncio
    async def test_webhook_failure_does_not_fail_cycle(self, make_loop, scripted_sender, store, session):
        _enable_webhook(store, max_retries=2)
        send = scripted_sender(
            DeliveryResult(success=False, error_kind=ErrorKind.CONNECTION_REFUSED, retryable=True, attempts=1)
        )
        speak = AsyncMock()
        loop = make_loop(send, speak=speak)

        outcome = await loop.run_cycle()

        assert outcome is not None
        assert outcome.delivery.success is False
        assert len(send.calls) == 2
        speak.assert_awaited_once()
        record = (await session.execute(select(CaptureRecord))).scalars().one()
        assert record.webhook_outcome == WebhookOutcome.FAILED.value
        assert record.webhook_error == "ConnectionRefused"
        assert record.webhook_attempts == 2

    @pytest.mark.asyncio
    async def test_config_is_reread_each_cycle(self, make_loop, scripted_sender, store):
        send = scripted_sender(_ok())
        loop = make_loop(send)

        await loop.run_cycle()
        assert send.calls == []

        _enable_webhook(store)
        await loop.run_cycle()
        assert len(send.calls) == 1
        assert send.calls[0][0] == "http://hooks.example.test/narrator"


class TestTimer:
    @pytest.mark.asyncio
    async def test_start_runs_first_cycle_and_stop_prevents_next(self, make_loop, scripted_sender):
        loop = make_loop(scripted_sender(_ok()))

        assert loop.start() is True
        assert loop.start() is False
        assert loop.running is True

        for _ in range(10):
            await asyncio.sleep(0)
        assert await loop.stop() is True
        await loop.drain()

        assert loop.running is False
        assert loop.capture_count == 1
        assert await loop.stop() is False
