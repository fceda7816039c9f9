from __future__ import annotations

from fastapi import Request

from narrator.pipeline.breaker import CircuitBreaker
from narrator.pipeline.notifier import WebhookNotifier
from narrator.pipeline.orchestrator import CaptureLoop
from narrator.storage.settings_store import SettingsStore


def get_store(request: Request) -> SettingsStore:
    return request.app.state.services.store


def get_breaker(request: Request) -> CircuitBreaker:
    return request.app.state.services.breaker


def get_notifier(request: Request) -> WebhookNotifier:
    return request.app.state.services.notifier


def get_capture_loop(request: Request) -> CaptureLoop:
    return request.app.state.services.loop
