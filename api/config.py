from __future__ import annotations
import os
from decimal import Decimal

# ---- security settings ----
JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_SUPER_SECRET")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
ACCESS_TTL_SEC = int(os.getenv("ACCESS_TTL_SEC", str(24 * 3600)))

# shared secret for the maintenance (cron) endpoints; empty disables the check
MAINTENANCE_SECRET = os.getenv("MAINTENANCE_SECRET", "")

# ---- storage ----
DATABASE_URL = os.getenv("DATABASE_URL", "")
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory")   # memory | sql

# ---- billing defaults (USDC) ----
DEFAULT_DAILY_CAP = Decimal(os.getenv("DEFAULT_DAILY_CAP", "0.10"))
DEFAULT_MONTHLY_CAP = Decimal(os.getenv("DEFAULT_MONTHLY_CAP", "2.00"))

STALE_AGENT_HOURS = int(os.getenv("STALE_AGENT_HOURS", "24"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

API_VERSION = "v1"
