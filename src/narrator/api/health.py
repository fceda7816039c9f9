from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from narrator import __version__
from narrator.api.deps import get_breaker, get_store
from narrator.models.schemas import HealthResponse
from narrator.pipeline.breaker import CircuitBreaker
from narrator.pipeline.health import get_status
from narrator.storage.database import get_session
from narrator.storage.settings_store import SettingsStore
from narrator.storage import repository

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(
    session: AsyncSession = Depends(get_session),
    store: SettingsStore = Depends(get_store),
    breaker: CircuitBreaker = Depends(get_breaker),
):
    total = await repository.get_captures_count(session)
    today = await repository.get_captures_today_count(session)
    webhook = get_status(store.get_webhook(), breaker)
    return HealthResponse(
        version=__version__,
        captures_total=total,
        captures_today=today,
        webhook_status=webhook.status,
    )
