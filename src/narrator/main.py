from __future__ import annotations

from contextlib import asynccontextmanager
from types import SimpleNamespace

from fastapi import FastAPI

from narrator import __version__
from narrator.config import Settings, get_settings
from narrator.pipeline.breaker import CircuitBreaker
from narrator.pipeline.notifier import WebhookNotifier
from narrator.pipeline.orchestrator import CaptureLoop
from narrator.storage.database import close_db, init_db
from narrator.storage.settings_store import SettingsStore
from narrator.utils.logging import setup_logging
from narrator.api.webhooks import router as webhooks_router
from narrator.api.capture import router as capture_router
from narrator.api.health import router as health_router
from narrator.api.settings import router as settings_router


def build_services(settings: Settings) -> SimpleNamespace:
    """Wire the process-wide breaker, notifier and capture loop once."""
    yaml_config = settings.load_yaml_config()
    webhook_config = yaml_config.get("webhook", {})
    alarm_config = yaml_config.get("alarm", {})

    store = SettingsStore(settings.settings_file)
    breaker = CircuitBreaker.from_config(yaml_config.get("circuit_breaker", {}))
    notifier = WebhookNotifier(
        breaker,
        backoff_base_ms=webhook_config.get("backoff_base_ms", 1000),
        backoff_cap_ms=webhook_config.get("backoff_cap_ms", 5000),
        user_agent=webhook_config.get("user_agent", f"ScreenNarrator-Webhook/{__version__}"),
    )
    loop = CaptureLoop(
        store,
        notifier,
        sessions_dir=settings.sessions_dir,
        alarm_marker=alarm_config.get("marker", "ALARM:"),
        alarm_keywords=alarm_config.get("keywords") or [],
        history_context=yaml_config.get("capture", {}).get("history_context", 3),
    )
    return SimpleNamespace(store=store, breaker=breaker, notifier=notifier, loop=loop)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    services = build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        await init_db()
        if settings.autostart_capture:
            services.loop.start()
        yield
        await services.loop.stop()
        await services.loop.drain()
        await close_db()

    app = FastAPI(title="Screen Narrator", version=__version__, lifespan=lifespan)
    app.state.services = services

    app.include_router(webhooks_router)
    app.include_router(capture_router)
    app.include_router(health_router)
    app.include_router(settings_router)
    return app


app = create_app()
