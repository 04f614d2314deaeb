from __future__ import annotations
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from api.errors import ValidationFailed
from db.config_db import ACK_STATES, CONFIG_SOURCES
from db.status_db import AGENT_STATUSES
from db.timestamps import normalize_ts

UUID_V4_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)

def require_object(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationFailed("request body must be a JSON object", ["body"])
    return payload

def heartbeat_fields(payload: Any) -> tuple[str, Optional[str]]:
    payload = require_object(payload)
    status = payload.get("status")
    if status not in AGENT_STATUSES:
        raise ValidationFailed(f"status must be one of: {', '.join(AGENT_STATUSES)}", ["status"])
    session_id = payload.get("session_id")
    if session_id is not None and (not isinstance(session_id, str) or not UUID_V4_RE.match(session_id)):
        raise ValidationFailed("session_id must be a valid UUID v4", ["session_id"])
    return status, session_id

def ack_fields(payload: Any) -> tuple[str, str, Optional[str]]:
    payload = require_object(payload)
    bad = []
    slug = payload.get("skill_slug")
    if not isinstance(slug, str) or not slug.strip():
        bad.append("skill_slug")
    status = payload.get("sync_status")
    if status not in ACK_STATES:
        bad.append("sync_status")
    err = payload.get("sync_error")
    if err is not None and not isinstance(err, str):
        bad.append("sync_error")
    if bad:
        raise ValidationFailed(
            f"skill_slug is required and sync_status must be one of: {', '.join(ACK_STATES)}", bad
        )
    return slug.strip(), status, err

def timestamp_field(value: Any, field: str) -> Optional[str]:
    if value is None or value == "":
        return None
    try:
        return normalize_ts(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be an ISO-8601 timestamp", [field])

def config_write_fields(payload: Any) -> Dict[str, Any]:
    payload = require_object(payload)
    slug = payload.get("skill_slug")
    if not isinstance(slug, str) or not slug.strip():
        raise ValidationFailed("skill_slug is required", ["skill_slug"])

    bad = []
    enabled = payload.get("enabled")
    if enabled is not None and not isinstance(enabled, bool):
        bad.append("enabled")
    config = payload.get("config")
    if config is not None and not isinstance(config, dict):
        bad.append("config")
    source = payload.get("config_source")
    if source is not None and source not in CONFIG_SOURCES:
        bad.append("config_source")
    if bad:
        raise ValidationFailed(f"invalid fields: {', '.join(bad)}", bad)

    return {
        "skill_slug": slug.strip(),
        "enabled": enabled,
        "config": config,
        "config_source": source,
        "expected_updated_at": timestamp_field(payload.get("expected_updated_at"), "expected_updated_at")
    }

def cap_field(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationFailed(f"{field} must be a non-negative number", [field])
    try:
        cap = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{field} must be a non-negative number", [field])
    if not cap.is_finite() or cap < 0:
        raise ValidationFailed(f"{field} must be a non-negative number", [field])
    return cap
