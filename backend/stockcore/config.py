# backend/stockcore/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///stockcore.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Stock warnings fire when resulting stock <= this value
    LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 10)

    # Fallback acting user for ledger entries when an order carries none
    DEFAULT_ADMIN_ROLE = os.environ.get("DEFAULT_ADMIN_ROLE", "Super Admin")

    # Detached (fire-and-forget) restore jobs
    RESTORE_WORKERS = _env_int("RESTORE_WORKERS", 4)

    # Loyalty programme (amounts in whole currency units)
    LOYALTY_POINTS_PER_CURRENCY_UNIT = _env_int("LOYALTY_POINTS_PER_CURRENCY_UNIT", 1)
    LOYALTY_BONUS_THRESHOLDS = (
        (500, 50),
        (1000, 150),
        (2000, 400),
    )
    LOYALTY_POINTS_EXPIRY_DAYS = _env_int("LOYALTY_POINTS_EXPIRY_DAYS", 365)
