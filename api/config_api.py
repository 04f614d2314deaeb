from __future__ import annotations
import logging
from datetime import datetime
from typing import Callable
from fastapi import APIRouter, Body, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.deps import get_clock, get_db, get_rate_limiter
from api.errors import NotFound
from api.rate_limit import RateLimiter
from api.security_deps import require_subject
from api.validation import ack_fields, config_write_fields
from db.activity_db import write_activity
from db.config_db import acknowledge, list_configs, write_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/api/config", tags=["config"])

@router.get("")
def read_configs(subject: str = Depends(require_subject),
                 limiter: RateLimiter = Depends(get_rate_limiter),
                 db: Session = Depends(get_db)):
    limiter.enforce(subject, "config-read")
    return {"configs": list_configs(db, subject)}

@router.put("")
def put_config(payload: dict = Body(...),
               subject: str = Depends(require_subject),
               limiter: RateLimiter = Depends(get_rate_limiter),
               clock: Callable[[], datetime] = Depends(get_clock),
               db: Session = Depends(get_db)):
    """
    Create or update a skill config; it goes back to pending for the agent.
    body: { skill_slug, enabled?, config?, config_source?, expected_updated_at? }
    A stale expected_updated_at returns 409 with server_updated_at.
    """
    limiter.enforce(subject, "config-write")
    fields = config_write_fields(payload)
    now = clock()
    row = write_config(db, subject, now=now, **fields)

    # post-commit: the trail never mentions a write that was rolled back
    try:
        write_activity(db, subject, "config_changed", {
            "config_source": row["config_source"],
            "fields_changed": len(fields["config"] or {}),
            "updated_at": row["updated_at"]
        }, skill_slug=row["skill_slug"], now=now)
    except SQLAlchemyError:
        db.rollback()
        logger.warning("config_changed activity not recorded subject=%s skill=%s", subject, row["skill_slug"])

    return {"config": row}

@router.post("/status")
def report_status(payload: dict = Body(...),
                  subject: str = Depends(require_subject),
                  limiter: RateLimiter = Depends(get_rate_limiter),
                  db: Session = Depends(get_db)):
    """
    Agent reports whether one config was applied.
    body: { skill_slug, sync_status: applied|failed, sync_error? }
    """
    limiter.enforce(subject, "config-status")
    slug, sync_status, sync_error = ack_fields(payload)
    if not acknowledge(db, subject, slug, sync_status, sync_error):
        raise NotFound(f"No config for skill: {slug}")
    return {"message": "ok"}
