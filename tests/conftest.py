from __future__ import annotations

import os
import tempfile

import pytest
import respx

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from httpx import AsyncClient, ASGITransport

# Override settings before importing app
_scratch = tempfile.mkdtemp(prefix="narrator-tests-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SETTINGS_FILE"] = os.path.join(_scratch, "user-settings.json")
os.environ["SESSIONS_DIR"] = os.path.join(_scratch, "sessions")
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["AUTOSTART_CAPTURE"] = "false"

from narrator.config import Settings
from narrator.main import create_app
from narrator.models.schemas import DeliveryResult
from narrator.storage.database import get_session
from narrator.storage.settings_store import SettingsStore


class FakeClock:
    """Manually advanced wall clock, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep; records delays and advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)

    @property
    def total_ms(self) -> float:
        return sum(self.delays) * 1000


class ScriptedSender:
    """Returns the queued results in order, repeating the last one."""

    def __init__(self, *results: DeliveryResult):
        self.results = list(results)
        self.calls: list[tuple[str, dict, int]] = []

    async def __call__(self, url: str, payload: dict, timeout_ms: int) -> DeliveryResult:
        self.calls.append((url, payload, timeout_ms))
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


@pytest.fixture(autouse=True)
def _isolate_respx_global_router():
    """Keep routes registered on respx's global router from leaking between tests."""
    yield
    respx.mock.clear()
    respx.mock.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return RecordingSleep(clock)


@pytest.fixture
def scripted_sender():
    return ScriptedSender


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        settings_file=str(tmp_path / "user-settings.json"),
        sessions_dir=str(tmp_path / "sessions"),
        database_url="sqlite+aiosqlite://",
    )


@pytest.fixture
def store(tmp_path):
    return SettingsStore(tmp_path / "user-settings.json")


@pytest.fixture
def app(settings, session_factory):
    app = create_app(settings)

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
