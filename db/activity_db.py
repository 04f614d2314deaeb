from __future__ import annotations
import uuid
from datetime import datetime
from typing import Dict, Any, List
from sqlalchemy.orm import Session

from db.models import ActivityEvent
from db.timestamps import to_iso, utc_now

EVENT_TYPES = ("config_changed", "status_change")

def write_activity(db: Session, subject: str, event_type: str, event_data: Dict[str, Any],
                   skill_slug: str | None = None, now: datetime | None = None) -> str:
    """
    Append one activity event and commit.

    Callers run this after the state change it describes has been committed,
    so the trail never mentions a change that was rolled back.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"unknown event_type: {event_type}")
    eid = str(uuid.uuid4())
    db.add(ActivityEvent(
        id=eid,
        wallet_address=subject,
        skill_slug=skill_slug,
        event_type=event_type,
        event_data=event_data or {},
        occurred_at=to_iso(now or utc_now())
    ))
    db.commit()
    return eid

def list_activity(db: Session, subject: str, limit: int = 50) -> List[Dict[str, Any]]:
    rows = db.query(ActivityEvent).filter(
        ActivityEvent.wallet_address == subject
    ).order_by(ActivityEvent.occurred_at.desc()).limit(min(limit, 200)).all()
    return [{
        "id": r.id, "skill_slug": r.skill_slug, "event_type": r.event_type,
        "event_data": r.event_data or {}, "occurred_at": r.occurred_at
    } for r in rows]
