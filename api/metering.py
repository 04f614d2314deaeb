"""
Heartbeat metering.

The agent sends a heartbeat every 30-60s. The heartbeat itself is free, but
the time elapsed since the previous one is billed as compute minutes when the
agent was running in between (previous status not offline). Each interval is
capped at MAX_INTERVAL_MINUTES so a stretch of missed heartbeats (agent
actually down) is never billed as uptime.
"""
from __future__ import annotations
import logging
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Any
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from api.errors import LedgerWriteError, UpstreamFailure
from api.spend_caps import check
from db.status_db import get_status, stage_status
from db.timestamps import parse_ts, to_iso, utc_now
from db.usage_db import add_entry, record, operation_cost

logger = logging.getLogger(__name__)

MAX_INTERVAL_MINUTES = Decimal("5")
MIN_BILLABLE_MINUTES = Decimal("0.1")
BILLING_STEP = Decimal("0.1")

# concurrent heartbeats for one subject retried before giving up
HEARTBEAT_ATTEMPTS = 3

def billable_minutes(last_heartbeat: str, now: datetime) -> Decimal:
    """Minutes since last_heartbeat, capped at 5 and floored to 0.1; 0 below the 0.1 threshold."""
    elapsed = (now - parse_ts(last_heartbeat)).total_seconds()
    minutes = min(Decimal(str(elapsed)) / Decimal(60), MAX_INTERVAL_MINUTES)
    if minutes <= MIN_BILLABLE_MINUTES:
        return Decimal("0")
    return minutes.quantize(BILLING_STEP, rounding=ROUND_FLOOR)

def beat(db: Session, subject: str, status: str, session_id: str | None = None,
         now: datetime | None = None) -> Dict[str, Any]:
    """
    Bill the interval since the previous heartbeat, update the agent status and
    return the current spend decision.

    The status write is a compare-and-swap on the last_heartbeat that was
    billed from, and the compute charge commits in the same transaction. A
    heartbeat that loses the race to a concurrent one rolls back and re-reads,
    so it bills from the winner's timestamp instead of the shared interval.
    The free heartbeat ledger entry is written afterwards and only logged on
    failure.
    """
    now = now or utc_now()

    for _ in range(HEARTBEAT_ATTEMPTS):
        previous = get_status(db, subject)
        minutes = Decimal("0")
        try:
            if previous is not None and previous.last_heartbeat and previous.status != "offline":
                minutes = billable_minutes(previous.last_heartbeat, now)
            last_seen = previous.last_heartbeat if previous is not None else None
            if not stage_status(db, previous, subject, status, session_id, now):
                db.rollback()
                logger.info("heartbeat lost status race subject=%s, re-reading", subject)
                continue
            if minutes > 0:
                add_entry(db, subject, "compute_minute",
                          cost=minutes * operation_cost("compute_minute"),
                          metadata={"minutes": float(minutes), "from": last_seen, "to": to_iso(now)},
                          now=now)
            db.commit()
            break
        except IntegrityError:
            # concurrent first heartbeat created the row
            db.rollback()
            continue
        except SQLAlchemyError:
            db.rollback()
            logger.exception("heartbeat commit failed subject=%s", subject)
            raise UpstreamFailure("Failed to update status")
    else:
        logger.warning("heartbeat lost %d status races subject=%s", HEARTBEAT_ATTEMPTS, subject)
        raise UpstreamFailure("Failed to update status")

    try:
        record(db, subject, "heartbeat", metadata={"status": status}, now=now)
    except LedgerWriteError:
        logger.warning("heartbeat ledger entry dropped subject=%s", subject)

    decision = check(db, subject, now=now)
    if not decision.allowed:
        logger.info("spend cap exceeded subject=%s reason=%s", subject, decision.reason)

    return {
        "message": "ok",
        "compute_minutes_billed": minutes,
        "spending": decision.to_spending()
    }
