from __future__ import annotations
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.config import DEFAULT_DAILY_CAP, DEFAULT_MONTHLY_CAP
from api.errors import UpstreamFailure
from db.models import User
from db.timestamps import to_iso, utc_now

logger = logging.getLogger(__name__)

def _view(subject: str, row: User | None) -> Dict[str, Any]:
    daily = row.daily_spend_cap if row is not None else None
    monthly = row.monthly_spend_cap if row is not None else None
    return {
        "wallet_address": subject,
        "daily_spend_cap": Decimal(str(daily)) if daily is not None else DEFAULT_DAILY_CAP,
        "monthly_spend_cap": Decimal(str(monthly)) if monthly is not None else DEFAULT_MONTHLY_CAP,
        "sync_configs": True if row is None or row.sync_configs is None else bool(row.sync_configs)
    }

def get_settings(db: Session, subject: str) -> Dict[str, Any]:
    """Caps and sync preference for a subject; unset values fall back to defaults."""
    try:
        row = db.query(User).filter(User.wallet_address == subject).first()
    except SQLAlchemyError:
        logger.exception("settings read failed subject=%s", subject)
        raise UpstreamFailure()
    return _view(subject, row)

def update_settings(db: Session, subject: str, changes: Dict[str, Any], now: datetime | None = None) -> Dict[str, Any]:
    ts = to_iso(now or utc_now())
    try:
        row = db.query(User).filter(User.wallet_address == subject).first()
        if not row:
            row = User(wallet_address=subject, sync_configs=True, created_at=ts)
            db.add(row)
        if "daily_spend_cap" in changes:
            row.daily_spend_cap = changes["daily_spend_cap"]
        if "monthly_spend_cap" in changes:
            row.monthly_spend_cap = changes["monthly_spend_cap"]
        if "sync_configs" in changes:
            row.sync_configs = bool(changes["sync_configs"])
        row.updated_at = ts
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("settings write failed subject=%s", subject)
        raise UpstreamFailure()
    return _view(subject, row)
