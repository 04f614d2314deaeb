from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from api.errors import UpstreamFailure
from api.metering import beat, billable_minutes
from db.models import AgentStatusRecord, UsageLedgerEntry
from db.timestamps import to_iso


def _compute_entries(db, subject):
    return db.query(UsageLedgerEntry).filter(
        UsageLedgerEntry.wallet_address == subject,
        UsageLedgerEntry.operation == "compute_minute"
    ).all()


@pytest.mark.parametrize("seconds, minutes", [
    (1000, Decimal("5.0")),
    (300, Decimal("5.0")),
    (37, Decimal("0.6")),
    (61, Decimal("1.0")),
    (6, Decimal("0")),
    (7, Decimal("0.1")),
    (-30, Decimal("0")),
])
def test_billable_minutes(clock, seconds, minutes):
    last = to_iso(clock())
    assert billable_minutes(last, clock.advance(seconds)) == minutes


def test_first_heartbeat_bills_nothing_and_opens_session(db, clock, subject):
    out = beat(db, subject, "online", now=clock())
    assert out["compute_minutes_billed"] == 0
    row = db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject).one()
    assert row.status == "online"
    assert row.session_start == to_iso(clock())
    assert row.last_heartbeat == to_iso(clock())


def test_61_seconds_online_bills_one_minute(db, clock, subject):
    beat(db, subject, "online", now=clock())
    out = beat(db, subject, "online", now=clock.advance(61))
    assert out["compute_minutes_billed"] == Decimal("1.0")
    entries = _compute_entries(db, subject)
    assert len(entries) == 1
    assert Decimal(str(entries[0].cost)) == Decimal("0.0005")
    assert entries[0].metadata_json["minutes"] == 1.0


def test_long_gap_is_capped_at_five_minutes(db, clock, subject):
    beat(db, subject, "online", now=clock())
    out = beat(db, subject, "online", now=clock.advance(1000))
    assert out["compute_minutes_billed"] == Decimal("5.0")
    assert Decimal(str(_compute_entries(db, subject)[0].cost)) == Decimal("0.0025")


def test_37_seconds_bills_six_tenths(db, clock, subject):
    beat(db, subject, "thinking", now=clock())
    out = beat(db, subject, "thinking", now=clock.advance(37))
    assert out["compute_minutes_billed"] == Decimal("0.6")


def test_sub_threshold_time_rolls_into_next_heartbeat_window(db, clock, subject):
    beat(db, subject, "online", now=clock())
    assert beat(db, subject, "online", now=clock.advance(5))["compute_minutes_billed"] == 0
    assert _compute_entries(db, subject) == []
    row = db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject).one()
    assert row.last_heartbeat == to_iso(clock())


def test_no_billing_after_offline(db, clock, subject):
    beat(db, subject, "online", now=clock())
    beat(db, subject, "offline", now=clock.advance(30))
    out = beat(db, subject, "online", now=clock.advance(120))
    assert out["compute_minutes_billed"] == 0
    # only the online -> offline interval was billed
    assert [float(e.metadata_json["minutes"]) for e in _compute_entries(db, subject)] == [0.5]


def test_every_heartbeat_leaves_a_free_ledger_entry(db, clock, subject):
    beat(db, subject, "online", now=clock())
    beat(db, subject, "idle", now=clock.advance(30))
    beats = db.query(UsageLedgerEntry).filter(UsageLedgerEntry.operation == "heartbeat").all()
    assert len(beats) == 2
    assert all(Decimal(str(b.cost)) == 0 for b in beats)


def test_session_start_reset_only_after_offline(db, clock, subject):
    beat(db, subject, "offline", now=clock())
    started = clock.advance(20)
    beat(db, subject, "online", now=started)
    beat(db, subject, "online", now=clock.advance(30))
    beat(db, subject, "idle", now=clock.advance(30))
    row = db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject).one()
    assert row.session_start == to_iso(started)

    beat(db, subject, "offline", now=clock.advance(30))
    db.refresh(row)
    assert row.session_start is None

    restarted = clock.advance(30)
    beat(db, subject, "online", now=restarted)
    db.refresh(row)
    assert row.session_start == to_iso(restarted)


def test_session_id_is_recorded(db, clock, subject):
    sid = "2f1c1b9e-3c4d-4e5f-8a6b-7c8d9e0f1a2b"
    beat(db, subject, "online", session_id=sid, now=clock())
    row = db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject).one()
    assert row.session_id == sid


def test_response_carries_spend_decision(db, clock, subject):
    out = beat(db, subject, "online", now=clock())
    assert out["spending"]["cap_exceeded"] is False
    assert out["spending"]["daily_cap"] == Decimal("0.10")


def test_failed_commit_bills_nothing(db, clock, subject, monkeypatch):
    beat(db, subject, "online", now=clock())

    def broken_commit():
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(UpstreamFailure):
        beat(db, subject, "online", now=clock.advance(61))
    monkeypatch.undo()

    assert _compute_entries(db, subject) == []
    row = db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject).one()
    # the retried heartbeat bills the same interval exactly once
    out = beat(db, subject, "online", now=clock.advance(1))
    assert out["compute_minutes_billed"] == Decimal("1.0")
    assert len(_compute_entries(db, subject)) == 1
    assert row.status == "online"


def _race_once(monkeypatch, competitor):
    """Run `competitor` right after the next status read, before that heartbeat writes."""
    import api.metering as metering
    real_get_status = metering.get_status
    pending = [competitor]

    def get_status_then_race(db, subject):
        row = real_get_status(db, subject)
        if pending:
            pending.pop()()
        return row

    monkeypatch.setattr(metering, "get_status", get_status_then_race)


def test_overlapping_heartbeats_bill_interval_once(db, session_factory, clock, subject, monkeypatch):
    beat(db, subject, "online", now=clock())
    now = clock.advance(61)
    other = session_factory()
    try:
        _race_once(monkeypatch, lambda: beat(other, subject, "online", now=now))
        out = beat(db, subject, "online", now=now)
    finally:
        other.close()

    assert out["compute_minutes_billed"] == 0
    entries = _compute_entries(db, subject)
    assert len(entries) == 1
    assert Decimal(str(entries[0].cost)) == Decimal("0.0005")


def test_overlapping_first_heartbeats_create_one_row(db, session_factory, clock, subject, monkeypatch):
    other = session_factory()
    try:
        _race_once(monkeypatch, lambda: beat(other, subject, "online", now=clock()))
        beat(db, subject, "idle", now=clock())
    finally:
        other.close()

    rows = db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject).all()
    assert len(rows) == 1
    assert rows[0].status == "idle"
    assert _compute_entries(db, subject) == []


def test_going_active_without_open_session_opens_one(db, clock, subject):
    beat(db, subject, "idle", now=clock())
    row = db.query(AgentStatusRecord).filter(AgentStatusRecord.wallet_address == subject).one()
    assert row.session_start is None

    active = clock.advance(30)
    beat(db, subject, "online", now=active)
    db.refresh(row)
    assert row.session_start == to_iso(active)
