"""Pytest bootstrap configuration.

Environment variables are set before any application module is imported,
since settings are read at import time.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CLICKPESA_API_KEY", "test-api-key")
os.environ.setdefault("CLICKPESA_CLIENT_ID", "test-client-id")
os.environ.setdefault("CLICKPESA_ENVIRONMENT", "sandbox")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from infrastructure.database import build_engine, build_session_factory, create_tables, drop_tables
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


class FrozenClock:
    """Settable UTC clock for window arithmetic."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest_asyncio.fixture
async def engine():
    # StaticPool: every session shares the single in-memory connection
    engine = build_engine("sqlite:///:memory:", poolclass=StaticPool)
    await create_tables(engine)
    yield engine
    await drop_tables(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    def _factory(**kwargs):
        return SQLAlchemyUnitOfWork(session_factory=session_factory, **kwargs)
    return _factory


@pytest.fixture
def clock():
    return FrozenClock()
