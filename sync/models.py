from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Literal, Mapping, Optional

from utils.timeutil import Timestamp, parse_timestamp, to_iso

ActionType = Literal["insert", "update", "delete"]
ActionStatus = Literal["pending", "processing", "completed", "failed", "expired"]
ResolutionTag = Literal["server_wins", "client_wins", "merged"]

ACTION_TYPES = ("insert", "update", "delete")
ACTION_STATUSES = ("pending", "processing", "completed", "failed", "expired")

SERVER_WINS: ResolutionTag = "server_wins"
CLIENT_WINS: ResolutionTag = "client_wins"
# Reserved for field-level merge strategies; no resolver produces it yet.
MERGED: ResolutionTag = "merged"

# Older clients sent create/modify verbs.
_ACTION_TYPE_ALIASES = {"create": "insert", "modify": "update"}


class ActionValidationError(ValueError):
    pass


def normalize_action_type(raw: str) -> str:
    v = str(raw or "").strip().lower()
    v = _ACTION_TYPE_ALIASES.get(v, v)
    if v not in ACTION_TYPES:
        raise ActionValidationError(f"unsupported action_type: {raw!r}")
    return v


@dataclass(frozen=True)
class QueuedAction:
    """A client-originated mutation waiting to be replayed."""

    id: str
    table_name: str
    action_type: ActionType
    payload: Dict[str, Any]
    timestamp: datetime
    retry_count: int = 0
    max_retries: int = 3
    record_id: Optional[str] = None
    status: ActionStatus = "pending"
    error_message: Optional[str] = None

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def with_status(self, status: ActionStatus, error_message: Optional[str] = None) -> "QueuedAction":
        return replace(self, status=status, error_message=error_message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "table_name": self.table_name,
            "action_type": self.action_type,
            "record_id": self.record_id,
            "payload": dict(self.payload),
            "timestamp": to_iso(self.timestamp),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "status": self.status,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "QueuedAction":
        retry_count = int(d.get("retry_count") or 0)
        max_retries = int(d.get("max_retries") if d.get("max_retries") is not None else 3)
        if retry_count < 0 or max_retries < 0:
            raise ActionValidationError("retry_count/max_retries must be >= 0")
        if retry_count > max_retries:
            raise ActionValidationError(f"retry_count {retry_count} exceeds max_retries {max_retries}")
        status = str(d.get("status") or "pending")
        if status not in ACTION_STATUSES:
            raise ActionValidationError(f"unsupported status: {status!r}")
        record_id = d.get("record_id")
        return cls(
            id=str(d["id"]),
            table_name=str(d["table_name"]),
            action_type=normalize_action_type(d["action_type"]),  # type: ignore[arg-type]
            payload=dict(d.get("payload") or {}),
            timestamp=parse_timestamp_field(d["timestamp"], where="timestamp"),
            retry_count=retry_count,
            max_retries=max_retries,
            record_id=str(record_id) if record_id is not None else None,
            status=status,  # type: ignore[arg-type]
            error_message=d.get("error_message"),
        )


@dataclass(frozen=True)
class Charge:
    """A folio line item. Immutable once settled; corrections are new charges."""

    id: str
    amount: float
    idempotency_key: str
    description: str = ""
    folio_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "amount": self.amount,
            "idempotency_key": self.idempotency_key,
            "description": self.description,
        }
        if self.folio_id is not None:
            out["folio_id"] = self.folio_id
        return out

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Charge":
        folio_id = d.get("folio_id")
        return cls(
            id=str(d["id"]),
            amount=d["amount"],
            idempotency_key=str(d["idempotency_key"]),
            description=str(d.get("description") or ""),
            folio_id=str(folio_id) if folio_id is not None else None,
        )


@dataclass(frozen=True)
class EntityVersion:
    """One writer's full view of a versioned row (e.g. a room).

    `data` carries the remaining row fields untouched so the winning
    version can be written back as a whole.
    """

    status: str
    updated_at: datetime
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.data)
        out["status"] = self.status
        out["updated_at"] = to_iso(self.updated_at)
        return out

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "EntityVersion":
        # Missing status/updated_at raises KeyError; no defaults.
        rest = {k: v for k, v in d.items() if k not in ("status", "updated_at")}
        return cls(status=str(d["status"]), updated_at=parse_timestamp(d["updated_at"]), data=rest)


@dataclass(frozen=True)
class StatusConflict:
    server_data: EntityVersion
    client_data: EntityVersion


@dataclass(frozen=True)
class ConflictResolution:
    final_data: EntityVersion
    resolution: ResolutionTag
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_data": self.final_data.to_dict(),
            "resolution": self.resolution,
            "reason": self.reason,
        }


def parse_timestamp_field(value: Timestamp, *, where: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise ActionValidationError(f"{where}: {e}")
