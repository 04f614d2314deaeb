from __future__ import annotations
from datetime import datetime
from typing import Dict, Any
from sqlalchemy.orm import Session

from db.status_db import ACTIVE_STATUSES, get_status, status_to_dict
from db.timestamps import parse_ts, utc_now

def status_view(db: Session, subject: str, now: datetime | None = None) -> Dict[str, Any]:
    """Last known agent status plus session_duration (seconds) while a session is active."""
    now = now or utc_now()
    row = get_status(db, subject)
    if row is None:
        return {
            "wallet_address": subject, "status": "offline", "last_heartbeat": None,
            "session_id": None, "session_start": None, "updated_at": None,
            "session_duration": None
        }
    out = status_to_dict(row)
    out["session_duration"] = None
    if row.status in ACTIVE_STATUSES and row.session_start:
        out["session_duration"] = max(0.0, (now - parse_ts(row.session_start)).total_seconds())
    return out
