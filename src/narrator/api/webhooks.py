from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends

from narrator.api.deps import get_breaker, get_notifier, get_store
from narrator.models.schemas import (
    DeliveryResult,
    NotificationEvent,
    WebhookConfig,
    WebhookConfigUpdate,
    WebhookHealth,
    WebhookTestRequest,
)
from narrator.pipeline.breaker import CircuitBreaker
from narrator.pipeline.health import get_status
from narrator.pipeline.notifier import WebhookNotifier
from narrator.storage.settings_store import SettingsStore

logger = structlog.get_logger()

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.get("/status", response_model=WebhookHealth)
async def webhook_status(
    store: SettingsStore = Depends(get_store),
    breaker: CircuitBreaker = Depends(get_breaker),
):
    return get_status(store.get_webhook(), breaker)


@router.get("/config")
async def read_config(store: SettingsStore = Depends(get_store)):
    return store.get_webhook().model_dump(by_alias=True)


@router.put("/config")
async def update_config(
    update: WebhookConfigUpdate,
    store: SettingsStore = Depends(get_store),
    breaker: CircuitBreaker = Depends(get_breaker),
):
    previous = store.get_webhook()
    config: WebhookConfig = store.update_webhook(update)

    # A new endpoint starts with a clean failure history
    if config.url != previous.url:
        breaker.reset()

    logger.info("webhook_config_updated", enabled=config.enabled, url_changed=config.url != previous.url)
    return config.model_dump(by_alias=True)


@router.post("/reset", response_model=WebhookHealth)
async def reset_breaker(
    store: SettingsStore = Depends(get_store),
    breaker: CircuitBreaker = Depends(get_breaker),
):
    breaker.reset()
    return get_status(store.get_webhook(), breaker)


@router.post("/test", response_model=DeliveryResult)
async def send_test_event(
    body: WebhookTestRequest,
    store: SettingsStore = Depends(get_store),
    notifier: WebhookNotifier = Depends(get_notifier),
):
    event = NotificationEvent(
        event_type=body.event_type,
        description=body.description,
        capture_number=0,
        session_id=f"test-{uuid.uuid4()}",
        event_timestamp=datetime.now(timezone.utc),
        mode=store.get_mode(),
    )
    return await notifier.deliver(body.event_type, event, store.get_webhook())
