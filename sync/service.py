from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from cloud.remote_store import RemoteStore
from core import settings
from storage import db
from utils.redact import redact_mapping
from utils.timeutil import utc_now

from .idempotency import generate_idempotency_key
from .models import QueuedAction, normalize_action_type
from .replay import BASE_VERSION_KEY, ReplayHooks, ReplayResult, replay_actions

logger = logging.getLogger(__name__)

EVENTS = (
    "action_queued",
    "sync_started",
    "sync_completed",
    "action_retry",
    "action_failed",
    "action_expired",
    "conflict_resolved",
    "connection_change",
)

Listener = Callable[[Dict[str, Any]], None]


def _new_action_id() -> str:
    return f"action_{int(utc_now().timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


class OfflineSyncService:
    """Front-desk offline queue: accepts writes while disconnected and
    replays them against the hosted store when the connection returns.

    State lives in the local SQLite queue; this object only tracks
    connectivity and whether a replay is in flight.
    """

    def __init__(
        self,
        *,
        store_factory: Optional[Callable[[], RemoteStore]] = None,
        online: Optional[bool] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store_factory = store_factory
        self._clock = clock
        self._is_online = settings.start_online() if online is None else bool(online)
        self._sync_lock = threading.Lock()
        self._sync_in_progress = False
        self._listeners: Dict[str, List[Listener]] = {}

    def _now_iso(self) -> str:
        return self._clock().isoformat(timespec="milliseconds")

    # ---------------------
    # Events
    # ---------------------
    def on(self, event: str, callback: Listener) -> None:
        if event not in EVENTS:
            raise ValueError(f"unknown event: {event!r}")
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Listener) -> None:
        listeners = self._listeners.get(event) or []
        if callback in listeners:
            listeners.remove(callback)

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        for callback in list(self._listeners.get(event) or []):
            try:
                callback(data)
            except Exception:
                logger.exception(f"offline listener failed event={event}")

    # ---------------------
    # Connectivity
    # ---------------------
    @property
    def is_online(self) -> bool:
        return self._is_online

    def set_online(self, online: bool) -> Optional[ReplayResult]:
        """Record a connectivity change; coming back online triggers a replay."""
        was_online = self._is_online
        self._is_online = bool(online)
        if was_online != self._is_online:
            logger.info(f"offline_sync network {'online' if online else 'offline'}")
            self._emit("connection_change", {"is_online": self._is_online})
            if self._is_online:
                return self.sync_pending_actions()
        return None

    def connection_status(self) -> Dict[str, bool]:
        return {"is_online": self._is_online, "sync_in_progress": self._sync_in_progress}

    # ---------------------
    # Queue
    # ---------------------
    def queue_action(
        self,
        *,
        table_name: str,
        action_type: str,
        payload: Dict[str, Any],
        record_id: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        table_name = str(table_name or "").strip()
        if not table_name:
            raise ValueError("table_name must be non-empty")
        retries = settings.default_max_retries() if max_retries is None else int(max_retries)
        if retries < 0:
            raise ValueError("max_retries must be >= 0")

        action = QueuedAction(
            id=_new_action_id(),
            table_name=table_name,
            action_type=normalize_action_type(action_type),  # type: ignore[arg-type]
            payload=dict(payload or {}),
            timestamp=self._clock(),
            max_retries=retries,
            record_id=str(record_id) if record_id is not None else None,
        )
        db.insert_action(action)
        logger.info(
            f"offline_sync queued action={action.id} table={action.table_name} "
            f"type={action.action_type} payload={redact_mapping(action.payload)}"
        )
        self._emit("action_queued", action.to_dict())
        return action.id

    def pending_actions(self) -> List[QueuedAction]:
        return db.list_actions("pending")

    def failed_actions(self) -> List[QueuedAction]:
        return db.list_actions("failed")

    def retry_failed_actions(self) -> int:
        n = db.requeue_failed_actions()
        if n:
            logger.info(f"offline_sync requeued failed actions n={n}")
        return n

    def stats(self) -> Dict[str, Any]:
        counts = db.count_actions_by_status()
        return {
            "pending_actions": counts["pending"],
            "failed_actions": counts["failed"],
            "expired_actions": counts["expired"],
            "completed_actions": counts["completed"],
            "is_online": self._is_online,
            "sync_in_progress": self._sync_in_progress,
        }

    # ---------------------
    # Replay
    # ---------------------
    def _hooks(self) -> ReplayHooks:
        def _claim(a: QueuedAction) -> bool:
            return db.claim_action(a.id)

        def _completed(a: QueuedAction) -> None:
            db.mark_action_completed(a.id)

        def _expired(a: QueuedAction) -> None:
            db.mark_action_expired(a.id, a.error_message)
            self._emit("action_expired", a.to_dict())

        def _retry(a: QueuedAction) -> None:
            db.save_action_state(a)
            self._emit("action_retry", {"action": a.to_dict(), "error": a.error_message})

        def _failed(a: QueuedAction) -> None:
            db.save_action_state(a)
            self._emit("action_failed", {"action": a.to_dict(), "error": a.error_message})

        def _conflict(a: QueuedAction, c: Dict[str, Any]) -> None:
            self._emit("conflict_resolved", c)

        return ReplayHooks(
            claim=_claim,
            completed=_completed,
            expired=_expired,
            retry=_retry,
            failed=_failed,
            conflict=_conflict,
        )

    def sync_pending_actions(self) -> ReplayResult:
        """Run one replay pass over pending actions.

        Returns immediately when offline, when no remote store is configured
        or when another pass is already running.
        """
        if not self._is_online or self._store_factory is None:
            return ReplayResult(success=False, errors=["Sync conditions not met"])
        if not self._sync_lock.acquire(blocking=False):
            return ReplayResult(success=False, errors=["Sync conditions not met"])

        self._sync_in_progress = True
        try:
            self._emit("sync_started", {})
            db.reset_stale_processing_actions(stale_seconds=settings.stale_processing_s())
            pending = db.list_actions("pending")
            logger.info(f"offline_sync syncing {len(pending)} pending actions")

            result = replay_actions(
                pending,
                self._store_factory(),
                hooks=self._hooks(),
                max_age_hours=settings.action_max_age_hours(),
                now=self._clock(),
            )
            logger.info(
                f"offline_sync done success={result.success} processed={result.actions_processed} "
                f"expired={result.expired} failed={result.failed} conflicts={len(result.conflicts)}"
            )
            self._emit("sync_completed", result.to_dict())
            return result
        finally:
            self._sync_in_progress = False
            self._sync_lock.release()

    # ---------------------
    # Front-desk shortcuts
    # ---------------------
    def queue_check_in(self, guest_data: Dict[str, Any], room_id: str) -> str:
        return self.queue_action(
            table_name="reservations",
            action_type="insert",
            payload={
                **guest_data,
                "room_id": room_id,
                "status": "checked_in",
                "check_in_date": self._now_iso(),
            },
        )

    def queue_check_out(self, reservation_id: str) -> str:
        return self.queue_action(
            table_name="reservations",
            action_type="update",
            record_id=reservation_id,
            payload={"status": "checked_out", "check_out_date": self._now_iso()},
        )

    def queue_payment(self, folio_id: str, payment_data: Dict[str, Any]) -> str:
        payload = {
            "folio_id": folio_id,
            **payment_data,
            "status": "completed",
            "created_at": self._now_iso(),
        }
        payload.setdefault("idempotency_key", generate_idempotency_key("payment", folio_id))
        return self.queue_action(
            table_name="payments",
            action_type="insert",
            payload=payload,
            max_retries=settings.payment_max_retries(),
        )

    def queue_charge(self, folio_id: str, amount: float, description: str = "") -> str:
        key = generate_idempotency_key("charge", folio_id)
        return self.queue_action(
            table_name="folio_charges",
            action_type="insert",
            payload={
                "id": str(uuid.uuid4()),
                "folio_id": folio_id,
                "amount": amount,
                "description": description,
                "idempotency_key": key,
            },
        )

    def queue_room_status(self, room_id: str, status: str, *, base_updated_at: Optional[str] = None) -> str:
        payload: Dict[str, Any] = {"status": status, "updated_at": self._now_iso()}
        if base_updated_at:
            payload[BASE_VERSION_KEY] = base_updated_at
        return self.queue_action(table_name="rooms", action_type="update", record_id=room_id, payload=payload)

    def queue_maintenance_request(self, room_id: str, request_data: Dict[str, Any]) -> str:
        return self.queue_action(
            table_name="housekeeping_tasks",
            action_type="insert",
            payload={
                "room_id": room_id,
                "task_type": "maintenance",
                **request_data,
                "status": "pending",
                "created_at": self._now_iso(),
            },
        )
