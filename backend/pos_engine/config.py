# backend/pos_engine/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pos_engine.sqlite3 unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///pos_engine.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sale engine policy
    POS_PAYMENT_TOLERANCE_CENTS = int(os.environ.get("POS_PAYMENT_TOLERANCE_CENTS", "1"))
    POS_ALLOW_NEGATIVE_STOCK = _env_bool("POS_ALLOW_NEGATIVE_STOCK", False)
    POS_WALK_IN_CUSTOMER_CODE = os.environ.get("POS_WALK_IN_CUSTOMER_CODE", "WALKIN")
    POS_RETRY_ATTEMPTS = int(os.environ.get("POS_RETRY_ATTEMPTS", "3"))
