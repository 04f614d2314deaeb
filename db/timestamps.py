"""
Timestamp helpers.

All timestamps are stored as fixed-width UTC strings with microseconds
(2026-01-31T12:00:00.000000Z). Fixed width keeps string order equal to time
order, so range filters and ORDER BY work directly on the columns.
"""
from __future__ import annotations
from datetime import datetime, timedelta, timezone

TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TS_FORMAT)


def parse_ts(value: str) -> datetime:
    """Parse any ISO-8601 timestamp; naive values are taken as UTC. Raises ValueError."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError("timestamp must be a non-empty string")
    raw = value.strip()
    if raw.endswith("Z") or raw.endswith("z"):
        raw = raw[:-1] + "+00:00"
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_ts(value: str) -> str:
    return to_iso(parse_ts(value))


def day_start(dt: datetime) -> datetime:
    dt = dt.astimezone(timezone.utc)
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(dt: datetime) -> datetime:
    return day_start(dt).replace(day=1)


def next_after(previous: str | None, now: datetime) -> str:
    """`now` as a stored timestamp, bumped past `previous` so row versions only move forward."""
    if previous:
        prev = parse_ts(previous)
        if now <= prev:
            now = prev + timedelta(microseconds=1)
    return to_iso(now)
