from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Callable
from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from api.config import MAINTENANCE_SECRET, STALE_AGENT_HOURS
from api.deps import get_clock, get_db
from api.errors import Forbidden
from db.status_db import mark_stale_offline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/api/maintenance", tags=["maintenance"])

def require_maintenance_secret(authorization: str | None = Header(default=None)) -> None:
    if MAINTENANCE_SECRET and authorization != f"Bearer {MAINTENANCE_SECRET}":
        raise Forbidden("Maintenance secret required")

@router.post("/stale-agents", dependencies=[Depends(require_maintenance_secret)])
def stale_agents(clock: Callable[[], datetime] = Depends(get_clock), db: Session = Depends(get_db)):
    """
    Scheduled job: agents silent for STALE_AGENT_HOURS are marked offline.
    Rows left in `syncing` are not touched here.
    """
    now = clock()
    subjects = mark_stale_offline(db, timedelta(hours=STALE_AGENT_HOURS), now=now)
    logger.info("stale agent sweep marked %d agents offline", len(subjects))
    return {"stale_agents_marked": len(subjects), "timestamp": now.isoformat()}
