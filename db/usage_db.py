from __future__ import annotations
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Any, List
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.errors import LedgerWriteError, UpstreamFailure
from db.models import UsageLedgerEntry
from db.timestamps import to_iso, utc_now, day_start

logger = logging.getLogger(__name__)

# USDC cost per operation. Heartbeats and reads are free.
OPERATION_COSTS: Dict[str, Decimal] = {
    "api_call":       Decimal("0.0001"),
    "config_write":   Decimal("0.001"),
    "config_read":    Decimal("0"),
    "sync":           Decimal("0.0005"),
    "heartbeat":      Decimal("0"),
    "export":         Decimal("0.01"),
    "compute_minute": Decimal("0.0005"),   # per minute
    "skill_install":  Decimal("0"),
    "x402_payment":   Decimal("0"),        # pass-through, cost comes from the payment
}

def operation_cost(operation: str) -> Decimal:
    return OPERATION_COSTS.get(operation, Decimal("0"))

def _dec(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")

def add_entry(
    db: Session,
    subject: str,
    operation: str,
    cost: Decimal | None = None,
    skill_slug: str | None = None,
    metadata: Dict[str, Any] | None = None,
    now: datetime | None = None
) -> str:
    """Stage a ledger row in the caller's transaction (no commit)."""
    if operation not in OPERATION_COSTS:
        raise ValueError(f"unknown operation: {operation}")
    cost = operation_cost(operation) if cost is None else _dec(cost)
    if cost < 0:
        raise ValueError("cost must be non-negative")
    eid = str(uuid.uuid4())
    db.add(UsageLedgerEntry(
        id=eid,
        wallet_address=subject,
        operation=operation,
        cost=cost,
        skill_slug=skill_slug,
        metadata_json=metadata or {},
        occurred_at=to_iso(now or utc_now())
    ))
    return eid

def record(
    db: Session,
    subject: str,
    operation: str,
    cost: Decimal | None = None,
    skill_slug: str | None = None,
    metadata: Dict[str, Any] | None = None,
    now: datetime | None = None
) -> str:
    """
    Append one ledger entry in its own commit.

    Raises LedgerWriteError when the store fails so the caller can decide
    whether that is fatal; the entry is never half written.
    """
    try:
        eid = add_entry(db, subject, operation, cost, skill_slug, metadata, now)
        db.commit()
        return eid
    except SQLAlchemyError:
        db.rollback()
        logger.exception("ledger write failed subject=%s operation=%s", subject, operation)
        raise LedgerWriteError(operation)

def summarize(db: Session, subject: str, start: datetime, end: datetime) -> Dict[str, Any]:
    """Total cost and entry count for occurred_at in [start, end)."""
    try:
        total, count = db.query(
            func.coalesce(func.sum(UsageLedgerEntry.cost), 0),
            func.count(UsageLedgerEntry.id)
        ).filter(
            UsageLedgerEntry.wallet_address == subject,
            UsageLedgerEntry.occurred_at >= to_iso(start),
            UsageLedgerEntry.occurred_at < to_iso(end)
        ).one()
    except SQLAlchemyError:
        logger.exception("ledger summarize failed subject=%s", subject)
        raise UpstreamFailure()
    return {"total_cost": _dec(total), "operation_count": int(count or 0)}

def daily_history(db: Session, subject: str, days: int = 30, now: datetime | None = None) -> List[Dict[str, Any]]:
    now = now or utc_now()
    since = day_start(now) - timedelta(days=days)
    day = func.substr(UsageLedgerEntry.occurred_at, 1, 10)
    try:
        rows = db.query(
            day.label("day"),
            func.coalesce(func.sum(UsageLedgerEntry.cost), 0),
            func.count(UsageLedgerEntry.id)
        ).filter(
            UsageLedgerEntry.wallet_address == subject,
            UsageLedgerEntry.occurred_at >= to_iso(since)
        ).group_by(day).order_by(day.asc()).all()
    except SQLAlchemyError:
        logger.exception("ledger history failed subject=%s", subject)
        raise UpstreamFailure()
    return [{"day": d, "cost": _dec(c), "calls": int(n)} for d, c, n in rows]

def recent(db: Session, subject: str, limit: int = 50) -> List[Dict[str, Any]]:
    try:
        rows = db.query(UsageLedgerEntry).filter(
            UsageLedgerEntry.wallet_address == subject
        ).order_by(UsageLedgerEntry.occurred_at.desc()).limit(min(limit, 200)).all()
    except SQLAlchemyError:
        logger.exception("ledger read failed subject=%s", subject)
        raise UpstreamFailure()
    return [entry_to_dict(r) for r in rows]

def entry_to_dict(r: UsageLedgerEntry) -> Dict[str, Any]:
    return {
        "id": r.id,
        "operation": r.operation,
        "cost": _dec(r.cost),
        "skill_slug": r.skill_slug,
        "metadata": r.metadata_json or {},
        "occurred_at": r.occurred_at
    }
