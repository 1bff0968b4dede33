from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from core import settings


def get_db_path() -> Path:
    return settings.db_path()


def connect(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """
    Unified connection factory:
    - PRAGMA foreign_keys=ON
    - PRAGMA journal_mode=WAL (default, env overridable)
    - PRAGMA synchronous=NORMAL (default, env overridable)
    - PRAGMA busy_timeout
    """
    path = (db_path or get_db_path()).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=settings.SQLITE_TIMEOUT_S)
    conn.row_factory = sqlite3.Row

    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute(f"PRAGMA busy_timeout={int(settings.SQLITE_TIMEOUT_S * 1000)};")

    try:
        conn.execute(f"PRAGMA journal_mode={settings.SQLITE_JOURNAL_MODE};")
    except sqlite3.OperationalError:
        # Some environments restrict changing journal mode; keep usable.
        pass

    if settings.SQLITE_SYNCHRONOUS in {"OFF", "NORMAL", "FULL", "EXTRA"}:
        try:
            conn.execute(f"PRAGMA synchronous={settings.SQLITE_SYNCHRONOUS};")
        except sqlite3.OperationalError:
            pass

    return conn


def _safe_json_loads(s: str) -> Any:
    try:
        return json.loads(s) if s else None
    except ValueError:
        return None


def _utc_now_iso() -> str:
    """Timezone-aware UTC timestamp for storage."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def _utc_now_dt() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso_utc(ts: str) -> Optional[datetime]:
    """Parse an ISO timestamp string; treat naive datetimes as UTC."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(str(ts))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@contextmanager
def _conn_ro():
    """Read-only connection context."""
    conn = connect()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db_path: Optional[Path] = None, *, immediate: bool = False):
    """Read-write connection with explicit BEGIN/COMMIT/ROLLBACK.

    `immediate=True` takes the write lock up front so two replay workers
    cannot claim the same action.
    """
    conn = connect(db_path=db_path)
    try:
        conn.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
        yield conn
        conn.commit()
    except Exception:
        try:
            conn.rollback()
        except sqlite3.Error:
            pass
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Create the offline queue and cache tables if missing."""
    with transaction() as conn:
        # =====================
        # Offline action queue
        # =====================
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS offline_actions (
                id TEXT PRIMARY KEY,
                table_name TEXT NOT NULL,
                action_type TEXT NOT NULL,      -- insert|update|delete
                record_id TEXT,
                payload_json TEXT NOT NULL,
                client_timestamp TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                max_retries INTEGER NOT NULL DEFAULT 3,
                status TEXT NOT NULL,           -- pending|processing|completed|failed|expired
                error_message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK (retry_count >= 0 AND retry_count <= max_retries)
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_offline_actions_status ON offline_actions(status);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_offline_actions_table ON offline_actions(table_name);")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_offline_actions_client_ts ON offline_actions(client_timestamp);"
        )

        # =====================
        # Cached server reads for offline screens
        # =====================
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cached_data (
                cache_key TEXT PRIMARY KEY,
                table_name TEXT NOT NULL,
                data_json TEXT NOT NULL,
                last_updated TEXT NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cached_data_table ON cached_data(table_name);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cached_data_last_updated ON cached_data(last_updated);")
