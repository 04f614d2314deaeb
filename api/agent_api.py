from __future__ import annotations
from datetime import datetime
from typing import Callable, Optional
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from api.deps import get_clock, get_db, get_rate_limiter
from api.errors import ValidationFailed
from api.rate_limit import RateLimiter
from api.security_deps import require_subject
from api.validation import require_object, timestamp_field
from db.config_db import acknowledge_batch, pull_configs

router = APIRouter(prefix="/v1/api/agent", tags=["agent"])

@router.get("/pull")
def pull(since: Optional[str] = None,
         include_all: bool = False,
         subject: str = Depends(require_subject),
         limiter: RateLimiter = Depends(get_rate_limiter),
         clock: Callable[[], datetime] = Depends(get_clock),
         db: Session = Depends(get_db)):
    """
    Agent poll: configs still pending/syncing (all with include_all=true),
    updated strictly after `since` when given. Pending rows become syncing.
    """
    limiter.enforce(subject, "agent-pull")
    cursor = timestamp_field(since, "since")
    return pull_configs(db, subject, since=cursor, include_all=include_all, now=clock())

@router.post("/pull")
def acknowledge_results(payload: dict = Body(...),
                        subject: str = Depends(require_subject),
                        limiter: RateLimiter = Depends(get_rate_limiter),
                        db: Session = Depends(get_db)):
    """
    Bulk outcome report.
    body: { results: [{ skill_slug, sync_status: applied|failed, sync_error? }] }
    """
    limiter.enforce(subject, "agent-pull-ack")
    results = require_object(payload).get("results")
    if not isinstance(results, list):
        raise ValidationFailed("results array is required", ["results"])
    return {"updated": acknowledge_batch(db, subject, results)}
