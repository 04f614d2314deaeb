from __future__ import annotations
from datetime import datetime
from typing import Callable, Iterator
from sqlalchemy.orm import Session

from api.config import RATE_LIMIT_BACKEND
from api.rate_limit import RateLimiter, MemoryWindowStore
from db.database import SessionLocal
from db.rate_limit_db import SqlWindowStore
from db.timestamps import utc_now

def _build_limiter() -> RateLimiter:
    if RATE_LIMIT_BACKEND == "sql":
        return RateLimiter(SqlWindowStore(SessionLocal))
    return RateLimiter(MemoryWindowStore())

# one limiter per process; routers receive it through get_rate_limiter
rate_limiter = _build_limiter()

def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_clock() -> Callable[[], datetime]:
    return utc_now

def get_rate_limiter() -> RateLimiter:
    return rate_limiter
