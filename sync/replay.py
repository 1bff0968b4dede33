from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from cloud.remote_store import RemoteConflictError, RemoteStore, RemoteStoreError

from .models import CLIENT_WINS, SERVER_WINS, Charge, EntityVersion, QueuedAction, StatusConflict
from .policy import DEFAULT_MAX_AGE_HOURS, is_expired_action, record_failure
from .priority import prioritize_offline_actions
from .resolvers import resolve_folio_charges, resolve_room_status_conflict

logger = logging.getLogger(__name__)

# Payload key carrying the server `updated_at` the client last saw.
BASE_VERSION_KEY = "base_updated_at"


@dataclass
class ReplayResult:
    success: bool = True
    actions_processed: int = 0
    expired: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "actions_processed": self.actions_processed,
            "expired": self.expired,
            "failed": self.failed,
            "errors": list(self.errors),
            "conflicts": list(self.conflicts),
        }


@dataclass
class ReplayHooks:
    """Persistence and notification callbacks used during a replay pass.

    Every hook defaults to a no-op so the pass can run fully in memory.
    `claim` returns False when the action is no longer ours to replay.
    """

    claim: Callable[[QueuedAction], bool] = lambda a: True
    completed: Callable[[QueuedAction], None] = lambda a: None
    expired: Callable[[QueuedAction], None] = lambda a: None
    retry: Callable[[QueuedAction], None] = lambda a: None
    failed: Callable[[QueuedAction], None] = lambda a: None
    conflict: Callable[[QueuedAction, Dict[str, Any]], None] = lambda a, c: None


def _charge_from_action(action: QueuedAction) -> Charge:
    p = action.payload
    if not p.get("idempotency_key"):
        raise RemoteStoreError(
            code="missing_idempotency_key",
            status=None,
            retryable=False,
            detail=f"folio charge {action.id} cannot be reconciled without an idempotency_key",
        )
    return Charge.from_dict({**p, "id": p.get("id") or action.id})


def _resolve_charge_conflict(action: QueuedAction, store: RemoteStore) -> Dict[str, Any]:
    client_charge = _charge_from_action(action)
    folio_id = action.payload.get("folio_id")
    filters = {"folio_id": folio_id} if folio_id is not None else {"idempotency_key": client_charge.idempotency_key}
    server_charges = [Charge.from_dict(r) for r in store.select("folio_charges", filters) if r.get("idempotency_key")]

    merged = resolve_folio_charges(server_charges, [client_charge])
    if any(c is client_charge for c in merged):
        # The conflict was not a duplicate of this charge; the charge is still new.
        store.insert("folio_charges", action.payload)
        return {"resolution": CLIENT_WINS, "reason": "Charge not present on server; inserted"}
    return {"resolution": SERVER_WINS, "reason": "Duplicate idempotency key; server charge kept"}


def _client_version(action: QueuedAction) -> EntityVersion:
    data = {k: v for k, v in action.payload.items() if k != BASE_VERSION_KEY}
    if "status" not in data:
        raise RemoteStoreError(
            code="missing_status",
            status=None,
            retryable=False,
            detail=f"room update {action.id} has no status to reconcile",
        )
    data.setdefault("updated_at", action.timestamp)
    return EntityVersion.from_dict(data)


def _resolve_room_conflict(action: QueuedAction, store: RemoteStore) -> Dict[str, Any]:
    record_id = str(action.record_id)
    server_row = store.get("rooms", record_id)
    if server_row is None:
        raise RemoteStoreError(code="not_found", status=None, retryable=False, detail=f"rooms/{record_id}")

    res = resolve_room_status_conflict(
        StatusConflict(server_data=EntityVersion.from_dict(server_row), client_data=_client_version(action))
    )
    if res.resolution == CLIENT_WINS:
        store.update("rooms", record_id, res.final_data.to_dict())
    return {"resolution": res.resolution, "reason": res.reason}


_CONFLICT_RESOLVERS: Dict[Tuple[str, str], Callable[[QueuedAction, RemoteStore], Dict[str, Any]]] = {
    ("folio_charges", "insert"): _resolve_charge_conflict,
    ("rooms", "update"): _resolve_room_conflict,
}


def execute_action(action: QueuedAction, store: RemoteStore) -> None:
    """Send one queued mutation to the hosted store."""
    if action.action_type == "insert":
        store.insert(action.table_name, action.payload)
        return

    if not action.record_id:
        raise RemoteStoreError(
            code="missing_record_id",
            status=None,
            retryable=False,
            detail=f"No record ID provided for {action.action_type}",
        )

    if action.action_type == "update":
        data = {k: v for k, v in action.payload.items() if k != BASE_VERSION_KEY}
        base = action.payload.get(BASE_VERSION_KEY)
        expected = {"updated_at": base} if base else None
        store.update(action.table_name, action.record_id, data, expected=expected)
        return

    store.delete(action.table_name, action.record_id)


def replay_actions(
    actions: Sequence[QueuedAction],
    store: RemoteStore,
    *,
    hooks: Optional[ReplayHooks] = None,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    now: Optional[datetime] = None,
) -> ReplayResult:
    """Replay queued actions in priority order.

    Expired actions are dropped without a network call. Write conflicts on
    folio charges and room updates are settled by the resolvers; every other
    failure spends one retry from the action's budget.
    """
    hooks = hooks or ReplayHooks()
    result = ReplayResult()

    for action in prioritize_offline_actions(actions):
        if is_expired_action(action.timestamp, max_age_hours, now=now):
            msg = f"Action {action.id}: expired after {max_age_hours}h"
            hooks.expired(action.with_status("expired", msg))
            result.expired += 1
            result.errors.append(msg)
            continue

        if action.retry_count > 0 and action.retries_exhausted:
            msg = f"Action {action.id}: retries exhausted ({action.retry_count}/{action.max_retries})"
            hooks.failed(action.with_status("failed", msg))
            result.failed += 1
            result.errors.append(msg)
            continue

        if not hooks.claim(action):
            logger.info(f"replay skip action={action.id}: already claimed")
            continue

        try:
            try:
                execute_action(action, store)
            except RemoteConflictError:
                resolver = _CONFLICT_RESOLVERS.get((action.table_name, action.action_type))
                if resolver is None:
                    raise
                outcome = resolver(action, store)
                conflict = {"action_id": action.id, "table_name": action.table_name, **outcome}
                logger.info(
                    f"replay conflict action={action.id} table={action.table_name} "
                    f"resolution={outcome['resolution']} reason={outcome['reason']}"
                )
                result.conflicts.append(conflict)
                hooks.conflict(action, conflict)
        except (RemoteStoreError, KeyError, ValueError) as e:
            msg = str(e) if isinstance(e, RemoteStoreError) else f"{type(e).__name__}: {e}"
            updated = record_failure(action, msg)
            result.errors.append(f"Action {action.id}: {msg}")
            logger.warning(f"replay failed action={action.id} retry={updated.retry_count}/{updated.max_retries}: {msg}")
            if updated.status == "failed":
                result.failed += 1
                hooks.failed(updated)
            else:
                hooks.retry(updated)
            continue

        hooks.completed(action.with_status("completed"))
        result.actions_processed += 1

    result.success = not result.errors
    return result
