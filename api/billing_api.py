from __future__ import annotations
from datetime import datetime, timedelta
from typing import Callable
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.deps import get_clock, get_db, get_rate_limiter
from api.errors import ValidationFailed
from api.rate_limit import RateLimiter
from api.security_deps import require_subject
from api.spend_caps import check
from db.timestamps import day_start, month_start
from db.usage_db import daily_history, recent, summarize

router = APIRouter(prefix="/v1/api/billing", tags=["billing"])

@router.get("/usage")
def usage(days: int = 30,
          subject: str = Depends(require_subject),
          limiter: RateLimiter = Depends(get_rate_limiter),
          clock: Callable[[], datetime] = Depends(get_clock),
          db: Session = Depends(get_db)):
    """Today/month summary, caps, per-day history for `days` and the latest ledger entries."""
    limiter.enforce(subject, "billing-usage")
    if days < 1 or days > 365:
        raise ValidationFailed("days must be between 1 and 365", ["days"])
    now = clock()
    tomorrow = day_start(now) + timedelta(days=1)
    today = summarize(db, subject, day_start(now), tomorrow)
    month = summarize(db, subject, month_start(now), tomorrow)
    decision = check(db, subject, now=now)
    return {
        "usage": {
            "daily_spend": today["total_cost"],
            "daily_calls": today["operation_count"],
            "monthly_spend": month["total_cost"],
            "monthly_calls": month["operation_count"]
        },
        "caps": {
            "daily_cap": decision.daily_cap,
            "monthly_cap": decision.monthly_cap,
            "cap_exceeded": not decision.allowed,
            "reason": decision.reason
        },
        "history": daily_history(db, subject, days, now=now),
        "recent_usage": recent(db, subject)
    }
