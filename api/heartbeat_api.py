from __future__ import annotations
from datetime import datetime
from typing import Callable
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from api.agent_status import status_view
from api.deps import get_clock, get_db, get_rate_limiter
from api.metering import beat
from api.rate_limit import RateLimiter
from api.security_deps import require_subject
from api.validation import heartbeat_fields

router = APIRouter(prefix="/v1/api", tags=["agent"])

@router.post("/heartbeat")
def heartbeat(payload: dict = Body(...),
              subject: str = Depends(require_subject),
              limiter: RateLimiter = Depends(get_rate_limiter),
              clock: Callable[[], datetime] = Depends(get_clock),
              db: Session = Depends(get_db)):
    """
    Agent liveness ping, also the compute billing tick.
    body: { status: online|thinking|idle|offline, session_id?: uuid4 }
    """
    limiter.enforce(subject, "heartbeat")
    status, session_id = heartbeat_fields(payload)
    return beat(db, subject, status, session_id, now=clock())

@router.get("/agent/status")
def agent_status(subject: str = Depends(require_subject),
                 clock: Callable[[], datetime] = Depends(get_clock),
                 db: Session = Depends(get_db)):
    return status_view(db, subject, now=clock())
