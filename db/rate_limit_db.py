from __future__ import annotations
from datetime import datetime, timedelta
from typing import Callable
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import RateCounter
from db.timestamps import to_iso

def _key(subject: str, operation: str) -> str:
    # Keep keys stable and simple
    return f"{subject}:{operation}"

class SqlWindowStore:
    """
    Fixed-window counters in the rate_counters table.

    Lets several server processes share one budget per (subject, operation).
    Every step is a single conditional UPDATE/INSERT so two concurrent callers
    can't both take the last slot.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def check_and_increment(self, subject: str, operation: str, max_calls: int,
                            window: timedelta, now: datetime) -> bool:
        key = _key(subject, operation)
        ts = to_iso(now)
        db = self.session_factory()
        try:
            if self._increment_open(db, key, max_calls, ts):
                return True

            # window expired -> restart it
            reset = db.query(RateCounter).filter(
                RateCounter.key == key,
                RateCounter.window_reset_at < ts
            ).update({"count": 1, "window_reset_at": to_iso(now + window)}, synchronize_session=False)
            db.commit()
            if reset:
                return True

            try:
                db.add(RateCounter(key=key, window_reset_at=to_iso(now + window), count=1))
                db.commit()
                return True
            except IntegrityError:
                # row exists (or a concurrent caller just created it)
                db.rollback()
                return self._increment_open(db, key, max_calls, ts)
        finally:
            db.close()

    def _increment_open(self, db: Session, key: str, max_calls: int, ts: str) -> bool:
        n = db.query(RateCounter).filter(
            RateCounter.key == key,
            RateCounter.window_reset_at >= ts,
            RateCounter.count < max_calls
        ).update({"count": RateCounter.count + 1}, synchronize_session=False)
        db.commit()
        return n > 0

    def reset(self) -> None:
        db = self.session_factory()
        try:
            db.query(RateCounter).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()
