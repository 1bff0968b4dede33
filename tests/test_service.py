from datetime import datetime, timedelta, timezone

import pytest

from cloud.remote_store import RemoteStoreError
from sync.models import QueuedAction
from sync.service import OfflineSyncService

NOW = datetime(2024, 3, 1, 9, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def svc(queue_db, store):
    return OfflineSyncService(store_factory=lambda: store, online=False, clock=lambda: NOW)


def test_check_in_is_queued_with_status_and_room(svc, queue_db):
    seen = []
    svc.on("action_queued", seen.append)

    action_id = svc.queue_check_in({"guest_name": "Ada"}, "101")

    a = queue_db.get_action(action_id)
    assert a.table_name == "reservations"
    assert a.action_type == "insert"
    assert a.payload["room_id"] == "101"
    assert a.payload["status"] == "checked_in"
    assert a.payload["guest_name"] == "Ada"
    assert a.timestamp == NOW
    assert action_id.startswith("action_")
    assert [e["id"] for e in seen] == [action_id]


def test_payment_gets_longer_retry_budget_and_key(svc, queue_db):
    a = queue_db.get_action(svc.queue_payment("F1", {"amount": 120.5}))
    assert a.table_name == "payments"
    assert a.max_retries == 5
    assert a.payload["idempotency_key"].startswith("payment_F1_")
    assert a.payload["status"] == "completed"


def test_payment_keeps_caller_key(svc, queue_db):
    a = queue_db.get_action(svc.queue_payment("F1", {"amount": 1, "idempotency_key": "mine"}))
    assert a.payload["idempotency_key"] == "mine"


def test_charge_and_room_status_helpers(svc, queue_db):
    charge = queue_db.get_action(svc.queue_charge("F9", 42.0, "Minibar"))
    assert charge.table_name == "folio_charges"
    assert charge.max_retries == 3
    assert charge.payload["idempotency_key"].startswith("charge_F9_")
    assert charge.payload["description"] == "Minibar"

    room = queue_db.get_action(svc.queue_room_status("101", "clean", base_updated_at="2024-03-01T08:00:00Z"))
    assert room.record_id == "101"
    assert room.action_type == "update"
    assert room.payload["base_updated_at"] == "2024-03-01T08:00:00Z"

    mr = queue_db.get_action(svc.queue_maintenance_request("101", {"description": "Leak"}))
    assert mr.table_name == "housekeeping_tasks"
    assert mr.payload["task_type"] == "maintenance"
    assert mr.payload["status"] == "pending"


def test_legacy_verbs_are_normalized_and_unknown_rejected(svc, queue_db):
    a = queue_db.get_action(svc.queue_action(table_name="guests", action_type="modify", payload={}, record_id=7))
    assert a.action_type == "update"
    assert a.record_id == "7"

    with pytest.raises(ValueError):
        svc.queue_action(table_name="guests", action_type="upsert", payload={})
    with pytest.raises(ValueError):
        svc.queue_action(table_name=" ", action_type="insert", payload={})


def test_sync_refused_when_offline(svc, store):
    svc.queue_check_out("res-1")
    res = svc.sync_pending_actions()
    assert res.success is False
    assert res.errors == ["Sync conditions not met"]
    assert store.calls == []


def test_sync_refused_without_store(queue_db):
    svc = OfflineSyncService(store_factory=None, online=True, clock=lambda: NOW)
    assert svc.sync_pending_actions().errors == ["Sync conditions not met"]


def test_coming_online_replays_queue(svc, store):
    store.seed("reservations", {"id": "res-1", "status": "checked_in"})
    events = []
    for name in ("connection_change", "sync_started", "sync_completed"):
        svc.on(name, lambda data, name=name: events.append(name))

    svc.queue_check_out("res-1")
    svc.queue_payment("F1", {"amount": 10})
    assert len(svc.pending_actions()) == 2

    res = svc.set_online(True)

    assert res is not None and res.success is True
    assert res.actions_processed == 2
    assert [c for c in store.calls if c[0] != "select"] == [("insert", "payments"), ("update", "reservations")]
    assert store.tables["reservations"]["res-1"]["status"] == "checked_out"
    assert events == ["connection_change", "sync_started", "sync_completed"]
    stats = svc.stats()
    assert stats["pending_actions"] == 0
    assert stats["completed_actions"] == 2
    assert stats["is_online"] is True
    assert stats["sync_in_progress"] is False


def test_set_online_twice_does_not_resync(svc):
    assert svc.set_online(True) is not None
    assert svc.set_online(True) is None
    assert svc.set_online(False) is None
    assert svc.connection_status() == {"is_online": False, "sync_in_progress": False}


def test_failures_exhaust_budget_then_requeue(svc, store, queue_db):
    store.fail_with[("insert", "reservations")] = RemoteStoreError(
        code="http_status_error", status=500, retryable=True, detail="boom"
    )
    failed = []
    svc.on("action_failed", failed.append)
    action_id = svc.queue_action(table_name="reservations", action_type="insert", payload={}, max_retries=2)
    svc.set_online(True)

    assert queue_db.get_action(action_id).retry_count == 1
    assert queue_db.get_action(action_id).status == "pending"

    res = svc.sync_pending_actions()
    assert res.failed == 1
    a = queue_db.get_action(action_id)
    assert a.status == "failed"
    assert a.retry_count == 2
    assert "boom" in a.error_message
    assert failed[0]["action"]["id"] == action_id
    assert [x.id for x in svc.failed_actions()] == [action_id]

    assert svc.retry_failed_actions() == 1
    a = queue_db.get_action(action_id)
    assert (a.status, a.retry_count) == ("pending", 0)


def test_stale_actions_expire_on_sync(svc, store, queue_db):
    queue_db.insert_action(
        QueuedAction(
            id="old",
            table_name="payments",
            action_type="insert",
            payload={"amount": 1},
            timestamp=NOW - timedelta(hours=30),
        )
    )
    expired = []
    svc.on("action_expired", expired.append)
    svc.set_online(True)

    assert queue_db.get_action("old").status == "expired"
    assert svc.stats()["expired_actions"] == 1
    assert store.calls == []
    assert expired[0]["id"] == "old"


def test_listener_errors_do_not_break_queueing(svc, queue_db):
    def boom(_):
        raise RuntimeError("listener bug")

    svc.on("action_queued", boom)
    assert queue_db.get_action(svc.queue_check_out("res-9")) is not None

    svc.off("action_queued", boom)
    with pytest.raises(ValueError):
        svc.on("no_such_event", boom)


def test_max_age_is_read_from_env(svc, store, queue_db, monkeypatch):
    monkeypatch.setenv("OFFLINE_ACTION_MAX_AGE_HOURS", "1")
    queue_db.insert_action(
        QueuedAction(
            id="two-hours",
            table_name="payments",
            action_type="insert",
            payload={},
            timestamp=NOW - timedelta(hours=2),
        )
    )
    svc.set_online(True)
    assert queue_db.get_action("two-hours").status == "expired"
