from __future__ import annotations

from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from api.config import DATABASE_URL as CONFIGURED_URL

# Stable DB location (always the same, no matter where you run the server from)
BASE_DIR = Path(__file__).resolve().parent.parent
DB_FILE = BASE_DIR / "agent_sync.sqlite3"
DATABASE_URL = CONFIGURED_URL or f"sqlite:///{DB_FILE}"

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}  # needed for sqlite + FastAPI

engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
