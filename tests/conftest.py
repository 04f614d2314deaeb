"""
Shared fixtures: in-memory SQLite per test, a controllable clock, a fresh
rate limiter and a TestClient wired to all three through dependency overrides.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.app import app
from api.auth import make_access_token
from api.deps import get_clock, get_db, get_rate_limiter
from api.rate_limit import MemoryWindowStore, RateLimiter
from db import models  # noqa: F401
from db.database import Base

SUBJECT = "0xabc0000000000000000000000000000000000001"
OTHER_SUBJECT = "0xdef0000000000000000000000000000000000002"
START = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(MemoryWindowStore(), clock=clock)


@pytest.fixture
def client(session_factory, clock, limiter):
    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {make_access_token(SUBJECT)}"}


@pytest.fixture
def other_auth():
    return {"Authorization": f"Bearer {make_access_token(OTHER_SUBJECT)}"}


@pytest.fixture
def subject():
    return SUBJECT


@pytest.fixture
def other_subject():
    return OTHER_SUBJECT
