"""
Pytest configuration and fixtures.
"""
import os
from datetime import datetime, timedelta, timezone

# Configuration is read at import time, so set it before any backend import
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = ""
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "true"
os.environ["AI_RATE_LIMIT_PER_MINUTE"] = "10"
os.environ["AI_RATE_LIMIT_PER_DAY"] = "100"
os.environ["AI_CACHE_TTL_HOURS"] = "72"
os.environ["AI_CACHE_SWEEP_INTERVAL_SECONDS"] = "0"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.cache import AIResponseCache
from backend.counter_store import SqlAlchemyCounterStore
from backend.models import Base
from backend.rate_limiter import AIRateLimiter


class FakeClock:
    """Controllable replacement for utc_now."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, 30, tzinfo=timezone.utc))


@pytest.fixture
def cache(clock):
    return AIResponseCache(ttl_hours=72, clock=clock)


@pytest.fixture
def session_factory():
    """In-memory SQLite database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def counter_store(session_factory):
    return SqlAlchemyCounterStore(session_factory)


@pytest.fixture
def limiter(counter_store, clock):
    return AIRateLimiter(
        counter_store,
        minute_limit=10,
        day_limit=100,
        enabled=True,
        timeout_seconds=5,
        clock=clock,
    )
