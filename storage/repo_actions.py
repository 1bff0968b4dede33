from __future__ import annotations

import json
import sqlite3
from typing import Dict, List, Optional

from sync.models import ACTION_STATUSES, QueuedAction
from utils.timeutil import to_iso

from .db_core import _conn_ro, _parse_iso_utc, _utc_now_dt, _utc_now_iso, transaction

_COLUMNS = (
    "id, table_name, action_type, record_id, payload_json, client_timestamp, "
    "retry_count, max_retries, status, error_message, created_at, updated_at"
)


def _row_to_action(row: sqlite3.Row) -> QueuedAction:
    return QueuedAction.from_dict(
        {
            "id": row["id"],
            "table_name": row["table_name"],
            "action_type": row["action_type"],
            "record_id": row["record_id"],
            "payload": json.loads(row["payload_json"] or "{}"),
            "timestamp": row["client_timestamp"],
            "retry_count": row["retry_count"],
            "max_retries": row["max_retries"],
            "status": row["status"],
            "error_message": row["error_message"],
        }
    )


def insert_action(action: QueuedAction) -> str:
    """Persist a newly queued action. Returns its id.

    Re-queuing the same id is a no-op so a client retrying its own enqueue
    does not duplicate the mutation.
    """
    now = _utc_now_iso()
    with transaction() as conn:
        conn.execute(
            f"""
            INSERT INTO offline_actions({_COLUMNS})
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?)
            ON CONFLICT(id) DO NOTHING
            """,
            (
                action.id,
                action.table_name,
                action.action_type,
                action.record_id,
                json.dumps(action.payload, ensure_ascii=False, sort_keys=True),
                to_iso(action.timestamp),
                int(action.retry_count),
                int(action.max_retries),
                action.status,
                action.error_message,
                now,
                now,
            ),
        )
    return action.id


def get_action(action_id: str) -> Optional[QueuedAction]:
    with _conn_ro() as conn:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM offline_actions WHERE id=?",
            (str(action_id),),
        ).fetchone()
    return _row_to_action(row) if row else None


def list_actions(status: Optional[str] = None, *, limit: int = 500) -> List[QueuedAction]:
    """List actions in queue order (client timestamp, then id)."""
    with _conn_ro() as conn:
        if status is None:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM offline_actions ORDER BY client_timestamp ASC, id ASC LIMIT ?",
                (int(limit),),
            ).fetchall()
        else:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM offline_actions
                WHERE status=?
                ORDER BY client_timestamp ASC, id ASC
                LIMIT ?
                """,
                (str(status), int(limit)),
            ).fetchall()
    return [_row_to_action(r) for r in rows]


def count_actions_by_status() -> Dict[str, int]:
    out: Dict[str, int] = {s: 0 for s in ACTION_STATUSES}
    with _conn_ro() as conn:
        rows = conn.execute("SELECT status, COUNT(*) AS n FROM offline_actions GROUP BY status").fetchall()
    for r in rows:
        out[str(r["status"])] = int(r["n"])
    out["total"] = sum(out[s] for s in ACTION_STATUSES)
    return out


def claim_action(action_id: str) -> bool:
    """Atomically move one action from pending to processing.

    Returns False when another worker got there first or the action is no
    longer pending.
    """
    with transaction(immediate=True) as conn:
        cur = conn.execute(
            "UPDATE offline_actions SET status='processing', updated_at=? WHERE id=? AND status='pending'",
            (_utc_now_iso(), str(action_id)),
        )
        return cur.rowcount == 1


def mark_action_completed(action_id: str) -> None:
    with transaction() as conn:
        conn.execute(
            "UPDATE offline_actions SET status='completed', error_message=NULL, updated_at=? WHERE id=?",
            (_utc_now_iso(), str(action_id)),
        )


def mark_action_expired(action_id: str, error_message: Optional[str] = None) -> None:
    with transaction() as conn:
        conn.execute(
            "UPDATE offline_actions SET status='expired', error_message=?, updated_at=? WHERE id=?",
            (error_message, _utc_now_iso(), str(action_id)),
        )


def save_action_state(action: QueuedAction) -> None:
    """Persist a retry decision (status, retry_count, error_message)."""
    with transaction() as conn:
        conn.execute(
            """
            UPDATE offline_actions
            SET status=?,
                retry_count=?,
                error_message=?,
                updated_at=?
            WHERE id=?
            """,
            (
                action.status,
                int(action.retry_count),
                (action.error_message or "")[:1000] or None,
                _utc_now_iso(),
                action.id,
            ),
        )


def delete_action(action_id: str) -> bool:
    with transaction() as conn:
        cur = conn.execute("DELETE FROM offline_actions WHERE id=?", (str(action_id),))
        return cur.rowcount == 1


def purge_completed_actions() -> int:
    with transaction() as conn:
        cur = conn.execute("DELETE FROM offline_actions WHERE status='completed'")
        return int(cur.rowcount)


def requeue_failed_actions() -> int:
    """Give every failed action a fresh retry budget."""
    with transaction() as conn:
        cur = conn.execute(
            """
            UPDATE offline_actions
            SET status='pending',
                retry_count=0,
                updated_at=?
            WHERE status='failed'
            """,
            (_utc_now_iso(),),
        )
        return int(cur.rowcount)


def reset_stale_processing_actions(stale_seconds: int = 600) -> int:
    """Return actions stuck in `processing` (replay crashed mid-flight) to pending."""
    stale_seconds = int(stale_seconds)
    now = _utc_now_dt()

    with transaction(immediate=True) as conn:
        rows = conn.execute("SELECT id, updated_at FROM offline_actions WHERE status='processing'").fetchall()

        to_reset: List[str] = []
        for r in rows:
            dt = _parse_iso_utc(str(r["updated_at"]))
            if dt is None:
                # Unparsable timestamp: leave it alone.
                continue
            if (now - dt).total_seconds() >= stale_seconds:
                to_reset.append(str(r["id"]))

        if not to_reset:
            return 0

        qmarks = ",".join(["?"] * len(to_reset))
        conn.execute(
            f"""
            UPDATE offline_actions
            SET status='pending',
                error_message=?,
                updated_at=?
            WHERE id IN ({qmarks})
            """,
            (f"stale processing > {stale_seconds}s", now.isoformat(timespec="milliseconds"), *to_reset),
        )
        return len(to_reset)
