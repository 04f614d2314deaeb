from __future__ import annotations
import logging
import uuid
from datetime import datetime
from typing import Dict, Any, Optional, List
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from api.errors import ConcurrencyConflict, UpstreamFailure
from db.models import SkillConfig
from db.settings_db import get_settings
from db.timestamps import to_iso, utc_now, next_after

logger = logging.getLogger(__name__)

SYNC_STATES = ("pending", "syncing", "applied", "failed")
OPEN_STATES = ("pending", "syncing")
ACK_STATES = ("applied", "failed")
CONFIG_SOURCES = ("dashboard", "manual", "preset", "default")

# lost compare-and-swap races retried for last-write-wins writes
WRITE_ATTEMPTS = 3

def config_to_dict(r: SkillConfig) -> Dict[str, Any]:
    return {
        "id": r.id,
        "wallet_address": r.wallet_address,
        "skill_slug": r.skill_slug,
        "enabled": bool(r.enabled),
        "config": r.config or {},
        "config_source": r.config_source,
        "config_schema_version": r.config_schema_version,
        "sync_status": r.sync_status,
        "sync_error": r.sync_error,
        "created_at": r.created_at,
        "updated_at": r.updated_at
    }

def _get(db: Session, subject: str, skill_slug: str) -> Optional[SkillConfig]:
    return db.query(SkillConfig).filter(
        SkillConfig.wallet_address == subject,
        SkillConfig.skill_slug == skill_slug
    ).first()

def list_configs(db: Session, subject: str) -> List[Dict[str, Any]]:
    try:
        rows = db.query(SkillConfig).filter(
            SkillConfig.wallet_address == subject
        ).order_by(SkillConfig.created_at.asc(), SkillConfig.skill_slug.asc()).all()
    except SQLAlchemyError:
        logger.exception("config read failed subject=%s", subject)
        raise UpstreamFailure()
    return [config_to_dict(r) for r in rows]

def _conflict(db: Session, server_updated_at: str) -> ConcurrencyConflict:
    db.rollback()
    logger.info("stale config write rejected server_updated_at=%s", server_updated_at)
    return ConcurrencyConflict(server_updated_at)

def write_config(
    db: Session,
    subject: str,
    skill_slug: str,
    enabled: bool | None = None,
    config: Dict[str, Any] | None = None,
    config_source: str | None = None,
    expected_updated_at: str | None = None,
    now: datetime | None = None
) -> Dict[str, Any]:
    """
    Create or update one skill config and queue it for the agent (sync_status=pending).

    expected_updated_at must already be normalized (db.timestamps.normalize_ts).
    When given, the update only applies if the stored row still carries that
    updated_at; otherwise ConcurrencyConflict is raised with the stored value
    and nothing changes. Fields left as None keep their stored value (or the
    default on create).
    """
    now = now or utc_now()
    try:
        for _ in range(WRITE_ATTEMPTS):
            row = _get(db, subject, skill_slug)

            if row is None:
                ts = to_iso(now)
                row = SkillConfig(
                    id=str(uuid.uuid4()),
                    wallet_address=subject,
                    skill_slug=skill_slug,
                    enabled=True if enabled is None else enabled,
                    config=config if config is not None else {},
                    config_source=config_source or "dashboard",
                    config_schema_version=1,
                    sync_status="pending",
                    sync_error=None,
                    created_at=ts,
                    updated_at=ts
                )
                db.add(row)
                try:
                    db.commit()
                except IntegrityError:
                    # created concurrently; go again as an update
                    db.rollback()
                    continue
                return config_to_dict(row)

            seen = row.updated_at
            if expected_updated_at is not None and seen != expected_updated_at:
                raise _conflict(db, seen)

            changes: Dict[str, Any] = {
                "sync_status": "pending",
                "sync_error": None,
                "updated_at": next_after(seen, now)
            }
            if enabled is not None:
                changes["enabled"] = enabled
            if config is not None:
                changes["config"] = config
            if config_source is not None:
                changes["config_source"] = config_source

            # compare-and-swap on the version we just read
            n = db.query(SkillConfig).filter(
                SkillConfig.id == row.id,
                SkillConfig.updated_at == seen
            ).update(changes, synchronize_session=False)
            if n == 1:
                db.commit()
                db.refresh(row)
                return config_to_dict(row)

            db.rollback()
            if expected_updated_at is not None:
                current = _get(db, subject, skill_slug)
                raise _conflict(db, current.updated_at if current else seen)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("config write failed subject=%s skill=%s", subject, skill_slug)
        raise UpstreamFailure()

    logger.warning("config write lost %d races subject=%s skill=%s", WRITE_ATTEMPTS, subject, skill_slug)
    raise UpstreamFailure("Config is being modified concurrently, retry later")

def pull_configs(
    db: Session,
    subject: str,
    since: str | None = None,
    include_all: bool = False,
    now: datetime | None = None
) -> Dict[str, Any]:
    """
    Hand the agent its open configs, oldest updated_at first.

    Rows still pending are moved to syncing in the same transaction as the
    read; the UPDATE is conditional on sync_status='pending' so two
    concurrent pulls can't both count the same transition. Pulling again
    while a row is syncing resends it unchanged.
    """
    now = now or utc_now()
    server_time = to_iso(now)

    prefs = get_settings(db, subject)
    if not prefs["sync_configs"]:
        return {
            "configs": [],
            "pending_count": 0,
            "sync_enabled": False,
            "message": "Config sync is disabled in user settings",
            "server_time": server_time
        }

    try:
        q = db.query(SkillConfig).filter(SkillConfig.wallet_address == subject)
        if not include_all:
            q = q.filter(SkillConfig.sync_status.in_(OPEN_STATES))
        if since:
            q = q.filter(SkillConfig.updated_at > since)
        rows = q.order_by(SkillConfig.updated_at.asc(), SkillConfig.skill_slug.asc()).all()

        pending_ids = [r.id for r in rows if r.sync_status == "pending"]
        moved = 0
        if pending_ids:
            moved = db.query(SkillConfig).filter(
                SkillConfig.wallet_address == subject,
                SkillConfig.id.in_(pending_ids),
                SkillConfig.sync_status == "pending"
            ).update({"sync_status": "syncing"}, synchronize_session=False)
        db.commit()
        configs = [config_to_dict(r) for r in rows]
    except SQLAlchemyError:
        db.rollback()
        logger.exception("config pull failed subject=%s", subject)
        raise UpstreamFailure()

    return {
        "configs": configs,
        "pending_count": moved,
        "sync_enabled": True,
        "server_time": server_time
    }

def _ack_changes(sync_status: str, sync_error: str | None) -> Dict[str, Any]:
    return {
        "sync_status": sync_status,
        "sync_error": (sync_error or None) if sync_status == "failed" else None
    }

def acknowledge(db: Session, subject: str, skill_slug: str, sync_status: str,
                sync_error: str | None = None) -> bool:
    """Record the agent's outcome for one config. False when the subject has no such config."""
    if sync_status not in ACK_STATES:
        raise ValueError(f"sync_status must be one of {ACK_STATES}")
    try:
        n = db.query(SkillConfig).filter(
            SkillConfig.wallet_address == subject,
            SkillConfig.skill_slug == skill_slug
        ).update(_ack_changes(sync_status, sync_error), synchronize_session=False)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("config ack failed subject=%s skill=%s", subject, skill_slug)
        raise UpstreamFailure()
    return n > 0

def _valid_ack(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    slug = entry.get("skill_slug")
    err = entry.get("sync_error")
    return (isinstance(slug, str) and bool(slug.strip())
            and entry.get("sync_status") in ACK_STATES
            and (err is None or isinstance(err, str)))

def acknowledge_batch(db: Session, subject: str, results: List[Any]) -> int:
    """Apply a list of {skill_slug, sync_status, sync_error?}; malformed or unknown entries are skipped."""
    updated = 0
    try:
        for entry in results:
            if not _valid_ack(entry):
                logger.info("skipping malformed ack subject=%s entry=%r", subject, entry)
                continue
            n = db.query(SkillConfig).filter(
                SkillConfig.wallet_address == subject,
                SkillConfig.skill_slug == entry["skill_slug"].strip()
            ).update(_ack_changes(entry["sync_status"], entry.get("sync_error")), synchronize_session=False)
            updated += n
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("config batch ack failed subject=%s", subject)
        raise UpstreamFailure()
    return updated
