from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from utils.timeutil import to_millis

from .models import QueuedAction

# Lower replays first. Payments land before the charges and room updates
# that may depend on them.
TABLE_PRIORITY: Dict[str, int] = {
    "payments": 1,
    "folio_charges": 2,
    "rooms": 3,
}
DEFAULT_PRIORITY = 999


def table_priority(table_name: str) -> int:
    return TABLE_PRIORITY.get(str(table_name), DEFAULT_PRIORITY)


def _replay_order(action: QueuedAction) -> Tuple[int, int]:
    return (table_priority(action.table_name), to_millis(action.timestamp))


def prioritize_offline_actions(actions: Iterable[QueuedAction]) -> List[QueuedAction]:
    """Order queued actions for replay: by table priority, then oldest first.

    Returns a new list; the input is left untouched.
    """
    return sorted(actions, key=_replay_order)
