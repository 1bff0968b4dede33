import random
from datetime import datetime, timedelta, timezone

from sync.models import QueuedAction
from sync.priority import DEFAULT_PRIORITY, prioritize_offline_actions, table_priority

T0 = datetime(2024, 1, 1, 8, 0, 0, tzinfo=timezone.utc)


def _a(id_, table, minutes):
    return QueuedAction(
        id=id_,
        table_name=table,
        action_type="insert",
        payload={},
        timestamp=T0 + timedelta(minutes=minutes),
    )


def test_critical_tables_replay_first():
    actions = [
        _a("1", "housekeeping_tasks", 120),
        _a("2", "payments", 180),
        _a("3", "folio_charges", 60),
        _a("4", "rooms", 0),
    ]
    out = prioritize_offline_actions(actions)
    assert [a.table_name for a in out] == ["payments", "folio_charges", "rooms", "housekeeping_tasks"]


def test_any_shuffle_gives_the_same_order():
    actions = [_a("p", "payments", 5), _a("f", "folio_charges", 4), _a("r", "rooms", 3), _a("o", "guests", 2)]
    rng = random.Random(7)
    for _ in range(20):
        shuffled = list(actions)
        rng.shuffle(shuffled)
        assert [a.id for a in prioritize_offline_actions(shuffled)] == ["p", "f", "r", "o"]


def test_same_table_orders_oldest_first():
    queue = [_a("r1", "rooms", 1), _a("p3", "payments", 3), _a("f2", "folio_charges", 2), _a("p0", "payments", 0)]
    out = prioritize_offline_actions(queue)
    assert [a.id for a in out] == ["p0", "p3", "f2", "r1"]


def test_input_is_not_mutated_and_empty_is_fine():
    queue = [_a("r", "rooms", 0), _a("p", "payments", 1)]
    before = list(queue)
    prioritize_offline_actions(queue)
    assert queue == before
    assert prioritize_offline_actions([]) == []


def test_unknown_tables_get_lowest_priority():
    assert table_priority("payments") == 1
    assert table_priority("folio_charges") == 2
    assert table_priority("rooms") == 3
    assert table_priority("minibar") == DEFAULT_PRIORITY
