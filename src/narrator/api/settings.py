from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from narrator.api.deps import get_breaker, get_store
from narrator.pipeline.breaker import CircuitBreaker
from narrator.storage.settings_store import SettingsStore

logger = structlog.get_logger()

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
async def read_settings(store: SettingsStore = Depends(get_store)):
    return store.get_all().model_dump(by_alias=True, mode="json")


@router.post("/reset")
async def reset_settings(
    store: SettingsStore = Depends(get_store),
    breaker: CircuitBreaker = Depends(get_breaker),
):
    settings = store.reset_to_defaults()
    # Defaults clear the webhook URL
    breaker.reset()
    logger.info("settings_reset")
    return settings.model_dump(by_alias=True, mode="json")
