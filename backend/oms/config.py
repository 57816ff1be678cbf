# backend/oms/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


REVERSAL_POLICIES = ("closed_books", "open_books")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/oms.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///oms.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Business calendar: a fixed offset, never the host's local time (WIB = UTC+7)
    BUSINESS_UTC_OFFSET_HOURS = _env_int("BUSINESS_UTC_OFFSET_HOURS", 7)

    # Identifier formats
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")
    INVOICE_NUMBER_PREFIX = os.environ.get("INVOICE_NUMBER_PREFIX", "SL/OJ-MKT")

    # Tax applied to customers registered for PPN (basis points, 1100 = 11%)
    STANDARD_TAX_RATE_BPS = _env_int("STANDARD_TAX_RATE_BPS", 1100)

    # Order lifecycle guards
    ALLOW_PAST_ORDER_DELETION = _env_bool("ALLOW_PAST_ORDER_DELETION", False)
    ALLOW_PAST_ORDER_EDITS = _env_bool("ALLOW_PAST_ORDER_EDITS", False)

    # closed_books: past snapshot days are immutable, compensation is posted today
    # open_books: compensation is posted against the original business date
    REVERSAL_POLICY = os.environ.get("REVERSAL_POLICY", "closed_books")

    ENFORCE_STOCK_AVAILABILITY = _env_bool("ENFORCE_STOCK_AVAILABILITY", True)

    # Actor recorded on movements written by background jobs
    SYSTEM_USER_ID = _env_int("SYSTEM_USER_ID", 1)

    # Background jobs (business timezone)
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", False)
    DAY_OPEN_HOUR = _env_int("DAY_OPEN_HOUR", 0)
    DAY_OPEN_MINUTE = _env_int("DAY_OPEN_MINUTE", 0)
    RECONCILIATION_HOUR = _env_int("RECONCILIATION_HOUR", 0)
    RECONCILIATION_MINUTE = _env_int("RECONCILIATION_MINUTE", 5)
    RECONCILIATION_MAX_WORKERS = _env_int("RECONCILIATION_MAX_WORKERS", 1)
