from __future__ import annotations
from sqlalchemy import Column, String, Integer, Boolean, Text, Numeric, JSON, UniqueConstraint
from db.database import Base

COST = Numeric(18, 6, asdecimal=True)

class User(Base):
    __tablename__ = "users"
    wallet_address = Column(String, primary_key=True, index=True)
    daily_spend_cap = Column(COST, nullable=True)       # null -> DEFAULT_DAILY_CAP
    monthly_spend_cap = Column(COST, nullable=True)     # null -> DEFAULT_MONTHLY_CAP
    sync_configs = Column(Boolean, default=True)        # agent may pull configs
    created_at = Column(String)
    updated_at = Column(String)

class SkillConfig(Base):
    __tablename__ = "skill_configs"
    __table_args__ = (UniqueConstraint("wallet_address", "skill_slug", name="uq_skill_configs_subject_slug"),)
    id = Column(String, primary_key=True, index=True)
    wallet_address = Column(String, index=True, nullable=False)
    skill_slug = Column(String, index=True, nullable=False)
    enabled = Column(Boolean, default=True)
    config = Column(JSON, default=dict)
    config_source = Column(String, default="dashboard")    # dashboard | manual | preset | default
    config_schema_version = Column(Integer, default=1)
    sync_status = Column(String, index=True, default="pending")  # pending | syncing | applied | failed
    sync_error = Column(Text, nullable=True)
    created_at = Column(String)
    updated_at = Column(String, index=True)             # bumped by dashboard writes only

class UsageLedgerEntry(Base):
    __tablename__ = "usage_ledger"
    id = Column(String, primary_key=True, index=True)
    wallet_address = Column(String, index=True, nullable=False)
    operation = Column(String, index=True)              # see db.usage_db.OPERATION_COSTS
    cost = Column(COST, default=0)
    skill_slug = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, default=dict)
    occurred_at = Column(String, index=True)

class AgentStatusRecord(Base):
    __tablename__ = "agent_status"
    wallet_address = Column(String, primary_key=True, index=True)
    status = Column(String, default="offline")          # online | thinking | idle | offline
    last_heartbeat = Column(String, nullable=True, index=True)
    session_id = Column(String, nullable=True)
    session_start = Column(String, nullable=True)
    updated_at = Column(String)

class ActivityEvent(Base):
    __tablename__ = "activity_events"
    id = Column(String, primary_key=True, index=True)
    wallet_address = Column(String, index=True)
    skill_slug = Column(String, nullable=True)
    event_type = Column(String, index=True)             # config_changed | status_change
    event_data = Column(JSON, default=dict)
    occurred_at = Column(String, index=True)

class RateCounter(Base):
    __tablename__ = "rate_counters"
    key = Column(String, primary_key=True, index=True)  # subject:operation
    window_reset_at = Column(String)
    count = Column(Integer, default=0)
