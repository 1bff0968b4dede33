# core/settings.py
from __future__ import annotations


import os
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if not v:
        return default
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    v = (os.getenv(name) or "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = (os.getenv(name) or "").strip()
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        return default


# -------------------------
# Local offline queue
# -------------------------
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "frontdesk_offline.sqlite3"


def db_path() -> Path:
    env = (os.getenv("FRONTDESK_DB_PATH") or "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return DEFAULT_DB_PATH


# -------------------------
# Replay policy
# Read at call time so tests and long-running workers pick up env changes.
# -------------------------
def action_max_age_hours() -> float:
    return _env_float("OFFLINE_ACTION_MAX_AGE_HOURS", 24.0)


def default_max_retries() -> int:
    return max(0, _env_int("OFFLINE_DEFAULT_MAX_RETRIES", 3))


def payment_max_retries() -> int:
    # Payments get a larger retry allowance than other tables.
    return max(0, _env_int("OFFLINE_PAYMENT_MAX_RETRIES", 5))


def sync_interval_s() -> float:
    return max(1.0, _env_float("OFFLINE_SYNC_INTERVAL_S", 30.0))


def stale_processing_s() -> int:
    return max(0, _env_int("OFFLINE_STALE_PROCESSING_S", 600))


def start_online() -> bool:
    return _env_bool("OFFLINE_START_ONLINE", True)


# -------------------------
# Hosted relational store (PostgREST-compatible)
# Blank URL means "no remote configured": replay reports an error per action.
# -------------------------
def remote_store_url() -> str:
    return (os.getenv("REMOTE_STORE_URL") or "").strip().rstrip("/")


def remote_store_api_key() -> str:
    # Remove accidental wrapping quotes/spaces from shell copy-paste.
    return (os.getenv("REMOTE_STORE_API_KEY") or "").strip().strip("'").strip('"').strip()


def remote_store_timeout_s() -> float:
    return _env_float("REMOTE_STORE_TIMEOUT_S", 20.0)


SQLITE_TIMEOUT_S: float = _env_float("SQLITE_TIMEOUT_S", 5.0)
SQLITE_JOURNAL_MODE: str = (os.getenv("FRONTDESK_SQLITE_JOURNAL_MODE", "WAL") or "WAL").strip().upper()
SQLITE_SYNCHRONOUS: str = (os.getenv("FRONTDESK_SQLITE_SYNCHRONOUS", "NORMAL") or "NORMAL").strip().upper()
