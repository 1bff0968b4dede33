from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from .db_core import _conn_ro, _safe_json_loads, _utc_now_iso, transaction


def cache_data(key: str, data: Any, table_name: str) -> None:
    """Store a server read so offline screens can render it later."""
    with transaction() as conn:
        conn.execute(
            """
            INSERT INTO cached_data(cache_key, table_name, data_json, last_updated)
            VALUES(?,?,?,?)
            ON CONFLICT(cache_key) DO UPDATE SET
                table_name=excluded.table_name,
                data_json=excluded.data_json,
                last_updated=excluded.last_updated
            """,
            (str(key), str(table_name), json.dumps(data, ensure_ascii=False), _utc_now_iso()),
        )


def get_cached_data(key: str) -> Optional[Any]:
    with _conn_ro() as conn:
        row = conn.execute("SELECT data_json FROM cached_data WHERE cache_key=?", (str(key),)).fetchone()
    if not row:
        return None
    return _safe_json_loads(row["data_json"])


def list_cache_entries(table_name: Optional[str] = None) -> List[Dict[str, Any]]:
    with _conn_ro() as conn:
        if table_name is None:
            rows = conn.execute(
                "SELECT cache_key, table_name, last_updated FROM cached_data ORDER BY cache_key ASC"
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT cache_key, table_name, last_updated FROM cached_data WHERE table_name=? ORDER BY cache_key ASC",
                (str(table_name),),
            ).fetchall()
    return [dict(r) for r in rows]


def clear_cache(table_name: Optional[str] = None) -> int:
    with transaction() as conn:
        if table_name is None:
            cur = conn.execute("DELETE FROM cached_data")
        else:
            cur = conn.execute("DELETE FROM cached_data WHERE table_name=?", (str(table_name),))
        return int(cur.rowcount)
