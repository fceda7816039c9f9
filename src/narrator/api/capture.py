from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from narrator.api.deps import get_capture_loop, get_store
from narrator.models.schemas import AlarmSoundUpdate, CaptureFrequencyUpdate, CaptureModeUpdate
from narrator.pipeline.orchestrator import CaptureLoop
from narrator.storage import repository
from narrator.storage.database import get_session
from narrator.storage.settings_store import SettingsStore

router = APIRouter(tags=["capture"])


@router.get("/capture/status")
async def capture_status(loop: CaptureLoop = Depends(get_capture_loop)):
    return loop.status()


@router.post("/capture/start")
async def start_capture(loop: CaptureLoop = Depends(get_capture_loop)):
    started = loop.start()
    return {"started": started, **loop.status()}


@router.post("/capture/stop")
async def stop_capture(loop: CaptureLoop = Depends(get_capture_loop)):
    stopped = await loop.stop()
    return {"stopped": stopped, **loop.status()}


@router.post("/capture/run")
async def run_capture(loop: CaptureLoop = Depends(get_capture_loop)):
    if loop.busy:
        raise HTTPException(status_code=409, detail="A capture cycle is already running")
    outcome = await loop.run_cycle()
    if outcome is None:
        return {"completed": False, **loop.status()}
    return {
        "completed": True,
        "event": outcome.event.to_payload(),
        "delivery": outcome.delivery.model_dump(mode="json"),
    }


@router.put("/capture/frequency")
async def set_frequency(
    body: CaptureFrequencyUpdate,
    store: SettingsStore = Depends(get_store),
):
    try:
        frequency = store.set_capture_frequency(body.value, body.unit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return frequency.model_dump(by_alias=True)


@router.put("/capture/mode")
async def set_mode(body: CaptureModeUpdate, store: SettingsStore = Depends(get_store)):
    store.set_mode(body.mode, body.watch_for)
    return {"mode": store.get_mode().value, "watch_for": store.get_watch_for()}


@router.put("/capture/alarm-sound")
async def set_alarm_sound(body: AlarmSoundUpdate, store: SettingsStore = Depends(get_store)):
    store.set_alarm_sound_enabled(body.enabled)
    return {"enabled": store.alarm_sound_enabled()}


@router.get("/captures")
async def list_captures(
    limit: int = Query(50, ge=1, le=500),
    session_id: str | None = None,
    session: AsyncSession = Depends(get_session),
):
    records = await repository.list_recent_captures(session, limit=limit, session_id=session_id)
    return [record.model_dump(mode="json") for record in records]


@router.get("/captures/{record_id}")
async def read_capture(record_id: int, session: AsyncSession = Depends(get_session)):
    record = await repository.get_capture(session, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Capture not found")
    return record.model_dump(mode="json")


@router.get("/sessions")
async def list_sessions(session: AsyncSession = Depends(get_session)):
    return await repository.list_sessions(session)
