from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.errors import UpstreamFailure
from db.activity_db import write_activity
from db.models import AgentStatusRecord
from db.timestamps import to_iso, utc_now

logger = logging.getLogger(__name__)

AGENT_STATUSES = ("online", "thinking", "idle", "offline")
ACTIVE_STATUSES = ("online", "thinking")

def status_to_dict(r: AgentStatusRecord) -> Dict[str, Any]:
    return {
        "wallet_address": r.wallet_address,
        "status": r.status,
        "last_heartbeat": r.last_heartbeat,
        "session_id": r.session_id,
        "session_start": r.session_start,
        "updated_at": r.updated_at
    }

def get_status(db: Session, subject: str) -> Optional[AgentStatusRecord]:
    try:
        return db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject).first()
    except SQLAlchemyError:
        logger.exception("status read failed subject=%s", subject)
        raise UpstreamFailure()

def stage_status(db: Session, previous: Optional[AgentStatusRecord], subject: str, status: str,
                 session_id: str | None, now: datetime) -> bool:
    """
    Apply one heartbeat to the status row inside the caller's transaction.

    The write is conditional on the last_heartbeat read in `previous`: False
    means another heartbeat got there first and the caller must re-read.
    A first heartbeat inserts; a concurrent first heartbeat surfaces as
    IntegrityError from the flush.

    session_start opens when an agent goes from offline (or unknown) into an
    active status, or goes active without any open session; it survives later
    heartbeats and closes on offline.
    """
    ts = to_iso(now)
    changes: Dict[str, Any] = {
        "status": status,
        "last_heartbeat": ts,
        "session_id": session_id,
        "updated_at": ts
    }
    was_down = previous is None or previous.status == "offline"
    if status in ACTIVE_STATUSES and (was_down or previous.session_start is None):
        changes["session_start"] = ts
    elif status == "offline":
        changes["session_start"] = None

    if previous is None:
        db.add(AgentStatusRecord(wallet_address=subject, **changes))
        db.flush()
        return True

    q = db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject)
    if previous.last_heartbeat is None:
        q = q.filter(AgentStatusRecord.last_heartbeat.is_(None))
    else:
        q = q.filter(AgentStatusRecord.last_heartbeat == previous.last_heartbeat)
    return q.update(changes, synchronize_session=False) == 1

def mark_stale_offline(db: Session, max_age: timedelta, now: datetime | None = None) -> List[str]:
    """Set agents with no heartbeat for max_age to offline. Returns affected subjects."""
    now = now or utc_now()
    cutoff = to_iso(now - max_age)
    try:
        rows = db.query(AgentStatusRecord).filter(
            AgentStatusRecord.status != "offline",
            AgentStatusRecord.last_heartbeat < cutoff
        ).all()
        subjects = []
        for r in rows:
            r.status = "offline"
            r.session_id = None
            r.session_start = None
            r.updated_at = to_iso(now)
            subjects.append(r.wallet_address)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("stale agent sweep failed")
        raise UpstreamFailure()

    for subject in subjects:
        try:
            write_activity(db, subject, "status_change",
                           {"action": "agent_marked_stale", "max_age_hours": max_age.total_seconds() / 3600},
                           now=now)
        except SQLAlchemyError:
            db.rollback()
            logger.warning("activity write failed after stale sweep subject=%s", subject)
    return subjects
