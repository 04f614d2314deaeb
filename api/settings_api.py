from __future__ import annotations
from datetime import datetime
from typing import Callable
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from api.deps import get_clock, get_db, get_rate_limiter
from api.errors import ValidationFailed
from api.rate_limit import RateLimiter
from api.security_deps import require_subject
from api.validation import cap_field, require_object
from db.settings_db import get_settings, update_settings

router = APIRouter(prefix="/v1/api/settings", tags=["settings"])

@router.get("")
def read_settings(subject: str = Depends(require_subject),
                  db: Session = Depends(get_db)):
    return {"settings": get_settings(db, subject)}

@router.put("")
def put_settings(payload: dict = Body(...),
                 subject: str = Depends(require_subject),
                 limiter: RateLimiter = Depends(get_rate_limiter),
                 clock: Callable[[], datetime] = Depends(get_clock),
                 db: Session = Depends(get_db)):
    """
    body: { daily_spend_cap?, monthly_spend_cap?, sync_configs? }
    """
    limiter.enforce(subject, "settings")
    payload = require_object(payload)
    changes = {}
    for field in ("daily_spend_cap", "monthly_spend_cap"):
        if field in payload:
            changes[field] = cap_field(payload[field], field)
    if "sync_configs" in payload:
        if not isinstance(payload["sync_configs"], bool):
            raise ValidationFailed("sync_configs must be a boolean", ["sync_configs"])
        changes["sync_configs"] = payload["sync_configs"]
    if not changes:
        raise ValidationFailed("nothing to update", ["daily_spend_cap", "monthly_spend_cap", "sync_configs"])
    return {"settings": update_settings(db, subject, changes, now=clock())}
