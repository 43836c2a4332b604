# backend/gasledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/gasledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///gasledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Reject ledger writes that reference an unknown customer.
    # False restores the permissive behaviour: the record is stored, balances are untouched.
    LEDGER_REQUIRE_CUSTOMER = _env_flag("LEDGER_REQUIRE_CUSTOMER", True)

    # Recompute cached balances from the transaction history when the app starts
    RECONCILE_ON_STARTUP = _env_flag("RECONCILE_ON_STARTUP", True)

    # Remote replica. Unset disables replication; changes stay in the outbox.
    SYNC_REMOTE_URL = os.environ.get("SYNC_REMOTE_URL") or None
    SYNC_TIMEOUT_SECONDS = float(os.environ.get("SYNC_TIMEOUT_SECONDS", "10"))
    SYNC_AUTO_PUSH = _env_flag("SYNC_AUTO_PUSH", True)
    SYNC_BATCH_SIZE = int(os.environ.get("SYNC_BATCH_SIZE", "200"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
