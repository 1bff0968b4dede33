from .idempotency import generate_idempotency_key
from .models import (
    Charge,
    ConflictResolution,
    EntityVersion,
    QueuedAction,
    StatusConflict,
)
from .policy import is_expired_action, record_failure, should_retry_action
from .priority import prioritize_offline_actions
from .resolvers import resolve_folio_charges, resolve_room_status_conflict

__all__ = [
    "Charge",
    "ConflictResolution",
    "EntityVersion",
    "QueuedAction",
    "StatusConflict",
    "generate_idempotency_key",
    "is_expired_action",
    "prioritize_offline_actions",
    "record_failure",
    "resolve_folio_charges",
    "resolve_room_status_conflict",
    "should_retry_action",
]
