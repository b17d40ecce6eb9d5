# backend/stockledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound for one mutating engine operation (sale, cancel, return, refund)
    OPERATION_TIMEOUT_SECONDS = float(os.environ.get("OPERATION_TIMEOUT_SECONDS", "30"))

    # 1 = no automatic retry on lock contention
    LOCK_RETRY_ATTEMPTS = int(os.environ.get("LOCK_RETRY_ATTEMPTS", "1"))

    # Credit limits are advisory unless this is switched on
    ENFORCE_CREDIT_LIMIT = _env_bool("ENFORCE_CREDIT_LIMIT", False)

    SALE_NUMBER_PREFIX = os.environ.get("SALE_NUMBER_PREFIX", "SALE")
