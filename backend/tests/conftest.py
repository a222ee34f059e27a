import asyncio
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crewclock.dependencies import get_clock
from crewclock.domain.time_tracking import db_models  # noqa: F401
from crewclock.infra.db import Base, get_db_session
from crewclock.main import app
from crewclock.settings import settings

TEST_DB_PATH = Path("test.db")
# Policy knobs tests may change; restored after every test.
_RESTORED_SETTINGS = (
    "testing",
    "time_tracking_timezone",
    "max_session_hours",
    "default_hourly_rate",
    "invoice_tax_percentage",
    "app_env",
    "metrics_token",
)


class FrozenClock:
    """Injectable clock that only moves when a test advances it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    TEST_DB_PATH.unlink(missing_ok=True)
    engine = create_async_engine(
        f"sqlite+aiosqlite:///./{TEST_DB_PATH}",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def create_schema() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_schema())
    yield engine
    asyncio.run(engine.dispose())
    TEST_DB_PATH.unlink(missing_ok=True)


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    saved = {name: getattr(settings, name) for name in _RESTORED_SETTINGS}
    settings.testing = True
    settings.time_tracking_timezone = "UTC"
    yield
    for name, value in saved.items():
        setattr(settings, name, value)


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def wipe() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(wipe())
    yield


@pytest.fixture()
def frozen_clock():
    clock = FrozenClock(datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc))
    app.dependency_overrides[get_clock] = clock
    yield clock
    app.dependency_overrides.pop(get_clock, None)


@contextmanager
def _test_client(session_maker, *, raise_server_exceptions: bool):
    async def session_override():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = session_override
    previous_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = session_maker
    try:
        with TestClient(app, raise_server_exceptions=raise_server_exceptions) as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_db_session, None)
        app.state.db_session_factory = previous_factory


@pytest.fixture()
def client(async_session_maker):
    with _test_client(async_session_maker, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture()
def client_no_raise(async_session_maker):
    """Client that turns unhandled server errors into 500 responses."""
    with _test_client(async_session_maker, raise_server_exceptions=False) as test_client:
        yield test_client
