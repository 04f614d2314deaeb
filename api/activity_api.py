from __future__ import annotations
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.deps import get_db
from api.security_deps import require_subject
from db.activity_db import list_activity

router = APIRouter(prefix="/v1/api/activity", tags=["activity"])

@router.get("")
def recent(limit: int = 50, subject: str = Depends(require_subject), db: Session = Depends(get_db)):
    rows = list_activity(db, subject, limit=limit)
    return {"count": len(rows), "events": rows}
