from typing import Any, Dict, List, Optional

import pytest

from cloud.remote_store import RemoteConflictError, RemoteStoreError


class FakeStore:
    """In-memory stand-in for the hosted store.

    `fail_with` maps (method, table) to an exception raised on every call;
    `conflict_once` raises a conflict on the first matching call only.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail_with: Dict[tuple, Exception] = {}
        self.conflict_once: set = set()

    def seed(self, table: str, *rows: Dict[str, Any]) -> None:
        for r in rows:
            self.tables.setdefault(table, {})[str(r["id"])] = dict(r)

    def _check(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        if (method, table) in self.conflict_once:
            self.conflict_once.discard((method, table))
            raise RemoteConflictError(code="conflict", status=409, retryable=False, detail="duplicate")
        err = self.fail_with.get((method, table))
        if err is not None:
            raise err

    def insert(self, table, row):
        self._check("insert", table)
        rid = str(row.get("id") or f"{table}-{len(self.tables.get(table, {})) + 1}")
        stored = {**row, "id": rid}
        self.tables.setdefault(table, {})[rid] = stored
        return stored

    def update(self, table, record_id, data, *, expected=None):
        self._check("update", table)
        row = self.tables.get(table, {}).get(str(record_id))
        if row is None:
            raise RemoteStoreError(code="not_found", status=None, retryable=False, detail=f"{table}/{record_id}")
        if expected and any(row.get(k) != v for k, v in expected.items()):
            raise RemoteConflictError(code="stale_write", status=None, retryable=False, detail="changed")
        row.update(data)
        return row

    def delete(self, table, record_id):
        self._check("delete", table)
        self.tables.get(table, {}).pop(str(record_id), None)

    def select(self, table, filters=None):
        self._check("select", table)
        rows = list(self.tables.get(table, {}).values())
        for k, v in (filters or {}).items():
            rows = [r for r in rows if r.get(k) == v]
        return rows

    def get(self, table, record_id) -> Optional[Dict[str, Any]]:
        self._check("get", table)
        return self.tables.get(table, {}).get(str(record_id))


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def queue_db(monkeypatch, tmp_path):
    monkeypatch.setenv("FRONTDESK_DB_PATH", str(tmp_path / "offline.sqlite3"))
    from storage import db

    db.init_db()
    return db
