"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory token secrets for settings validation
os.environ.setdefault("TOKENS__ACCESS_SECRET", "test-access-secret-0123456789abcdefghijkl")
os.environ.setdefault("TOKENS__REFRESH_SECRET", "test-refresh-secret-0123456789abcdefghijk")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timedelta, timezone

import pytest

from core.config import Settings, load_settings
from infrastructure.adapters.memory_stores import InMemoryCounterStore, InMemoryRevocationStore
from infrastructure.database import build_database
from infrastructure.unit_of_work import uow_factory as make_uow_factory


STRONG_PASSWORD = "Voyage#2024!"


class FakeClock:
    """可控时钟：测试中推进时间而不是 sleep"""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return load_settings(
        DEBUG=False,
        database={"url": "sqlite+aiosqlite:///:memory:"},
        redis={"url": None},
    )


@pytest.fixture
def counter_store(clock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock)


@pytest.fixture
def revocation_store(clock) -> InMemoryRevocationStore:
    return InMemoryRevocationStore(clock)


@pytest.fixture
async def database(settings):
    db = build_database(settings.database)
    await db.create_tables()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def uow_factory(database):
    return make_uow_factory(database.session_factory)


@pytest.fixture
def app(settings, clock):
    from main import create_app

    return create_app(settings, clock=clock)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
