from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Any, Optional
from sqlalchemy.orm import Session

from db.settings_db import get_settings
from db.timestamps import utc_now, day_start, month_start
from db.usage_db import summarize

@dataclass
class SpendDecision:
    allowed: bool
    daily_spend: Decimal
    monthly_spend: Decimal
    daily_cap: Decimal
    monthly_cap: Decimal
    reason: Optional[str] = None

    def to_spending(self) -> Dict[str, Any]:
        """Shape returned to the agent in heartbeat responses."""
        return {
            "daily_spend": self.daily_spend,
            "monthly_spend": self.monthly_spend,
            "daily_cap": self.daily_cap,
            "monthly_cap": self.monthly_cap,
            "cap_exceeded": not self.allowed,
            "warning": self.reason
        }

def _next_month(start: datetime) -> datetime:
    return (start + timedelta(days=32)).replace(day=1)

def check(db: Session, subject: str, now: datetime | None = None) -> SpendDecision:
    """
    Compare today's and this month's spend (UTC calendar windows) with the subject's caps.

    Advisory only: the agent uses it to throttle itself, and whatever stops an
    over-budget agent consults the same decision.
    """
    now = now or utc_now()
    prefs = get_settings(db, subject)
    daily_cap = prefs["daily_spend_cap"]
    monthly_cap = prefs["monthly_spend_cap"]

    today = day_start(now)
    month = month_start(now)
    daily = summarize(db, subject, today, today + timedelta(days=1))["total_cost"]
    monthly = summarize(db, subject, month, _next_month(month))["total_cost"]

    reason = None
    if daily >= daily_cap:
        reason = f"Daily spending cap reached (${daily:.4f} / ${daily_cap:.2f})"
    elif monthly >= monthly_cap:
        reason = f"Monthly spending cap reached (${monthly:.4f} / ${monthly_cap:.2f})"

    return SpendDecision(
        allowed=reason is None,
        daily_spend=daily,
        monthly_spend=monthly,
        daily_cap=daily_cap,
        monthly_cap=monthly_cap,
        reason=reason
    )
