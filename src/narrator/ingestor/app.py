"""Reference receiver for narrator webhooks.

Accepts ``POST /webhook`` bodies of the form ``{"eventType": ..., "data": {...}}``,
logs them, and appends one line per event to ``logs/webhook-YYYY-MM-DD.log``.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic_settings import BaseSettings, SettingsConfigDict
from starlette.exceptions import HTTPException as StarletteHTTPException

from narrator import __version__

logger = structlog.get_logger()

VALID_EVENT_TYPES = {"ALARM", "CHECKIN"}
AVAILABLE_ENDPOINTS = ["GET /health", "POST /webhook", "POST /test"]


class IngestorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INGESTOR_", env_file=".env", extra="ignore")

    host: str = "127.0.0.1"
    port: int = 3003
    logs_dir: str = "logs"


@lru_cache
def get_ingestor_settings() -> IngestorSettings:
    return IngestorSettings()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"error": error, "message": message, "timestamp": _now(), **extra},
    )


def append_event_log(logs_dir: str | Path, event_type: str, data: dict) -> Path:
    logs_path = Path(logs_dir)
    logs_path.mkdir(parents=True, exist_ok=True)
    timestamp = _now()
    log_file = logs_path / f"webhook-{timestamp[:10]}.log"
    with open(log_file, "a", encoding="utf-8") as f:
        f.write(f"{timestamp} [{event_type}] {json.dumps(data)}\n")
    return log_file


def create_ingestor_app(settings: IngestorSettings | None = None) -> FastAPI:
    settings = settings or get_ingestor_settings()
    app = FastAPI(title="Screen Narrator Webhook Ingestor", version=__version__)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error(404, "Not found", "Endpoint not found", availableEndpoints=AVAILABLE_ENDPOINTS)
        return _error(exc.status_code, "HTTP error", str(exc.detail))

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": _now(),
            "service": "Screen Narrator Webhook Ingestor",
            "version": __version__,
        }

    @app.post("/webhook")
    async def receive_webhook(request: Request):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error(400, "Invalid request format", "Body must be JSON")

        if not isinstance(body, dict):
            return _error(400, "Invalid request format", "eventType and data are required")

        event_type = body.get("eventType")
        data = body.get("data")
        # An empty object or list still counts as present; null, false, 0 and "" do not
        if not event_type or data is None or (not isinstance(data, (dict, list)) and not data):
            return _error(400, "Invalid request format", "eventType and data are required")
        if event_type not in VALID_EVENT_TYPES:
            return _error(400, "Invalid event type", "eventType must be ALARM or CHECKIN")

        data = data if isinstance(data, dict) else {"value": data}
        logger.info(
            "webhook_received",
            event_type=event_type,
            description=str(data.get("description", ""))[:200],
            screenshot=data.get("screenshotPath"),
            capture_number=data.get("captureNumber"),
            session_id=data.get("sessionId"),
            event_timestamp=data.get("eventTimestamp"),
        )
        append_event_log(settings.logs_dir, event_type, data)

        return {
            "status": "success",
            "message": f"{event_type} event received and logged",
            "timestamp": _now(),
            "eventType": event_type,
            "received": True,
        }

    @app.post("/test")
    async def test_endpoint(request: Request):
        raw = await request.body()
        try:
            body = json.loads(raw) if raw else None
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = raw.decode(errors="replace")
        logger.info("test_webhook_received", body=body)
        return {
            "status": "test received",
            "timestamp": _now(),
            "headers": dict(request.headers),
            "body": body,
        }

    return app
