from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from storage import db
from sync.idempotency import generate_idempotency_key
from sync.models import ACTION_STATUSES, ActionValidationError, Charge, EntityVersion, StatusConflict
from sync.resolvers import resolve_folio_charges, resolve_room_status_conflict
from sync.service import OfflineSyncService

router = APIRouter(prefix="/api/offline")


def _service(request: Request) -> OfflineSyncService:
    return request.app.state.offline


def _bad_request(code: str, e: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": str(e)})


class QueueActionRequest(BaseModel):
    table_name: str
    action_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    record_id: Optional[str] = None
    max_retries: Optional[int] = Field(default=None, ge=0)


@router.post("/actions")
async def queue_action(req: QueueActionRequest, request: Request):
    try:
        action_id = _service(request).queue_action(
            table_name=req.table_name,
            action_type=req.action_type,
            payload=req.payload,
            record_id=req.record_id,
            max_retries=req.max_retries,
        )
    except ValueError as e:
        raise _bad_request("INVALID_ACTION", e)
    return {"ok": True, "id": action_id}


@router.get("/actions")
async def list_actions(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
):
    if status is not None and status not in ACTION_STATUSES:
        raise _bad_request("INVALID_STATUS", ValueError(f"unsupported status: {status!r}"))
    return {"actions": [a.to_dict() for a in db.list_actions(status, limit=limit)]}


@router.delete("/actions/{action_id}")
async def delete_action(action_id: str):
    if not db.delete_action(action_id):
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": action_id})
    return {"ok": True}


@router.post("/sync")
def sync_now(request: Request):
    # Plain def: replay blocks on network I/O, so it runs in the threadpool.
    return _service(request).sync_pending_actions().to_dict()


@router.post("/retry-failed")
async def retry_failed(request: Request):
    return {"ok": True, "requeued": _service(request).retry_failed_actions()}


@router.get("/stats")
async def stats(request: Request):
    return _service(request).stats()


class ConnectionRequest(BaseModel):
    is_online: bool


@router.post("/connection")
def set_connection(req: ConnectionRequest, request: Request):
    svc = _service(request)
    result = svc.set_online(req.is_online)
    return {
        "connection": svc.connection_status(),
        "sync": result.to_dict() if result is not None else None,
    }


class IdempotencyKeyRequest(BaseModel):
    operation: str
    resource_id: str


@router.post("/idempotency-key")
async def idempotency_key(req: IdempotencyKeyRequest):
    try:
        return {"key": generate_idempotency_key(req.operation, req.resource_id)}
    except ValueError as e:
        raise _bad_request("INVALID_INPUT", e)


class ChargesResolveRequest(BaseModel):
    server_charges: List[Dict[str, Any]]
    client_charges: List[Dict[str, Any]]


@router.post("/resolve/charges")
async def resolve_charges(req: ChargesResolveRequest):
    try:
        server = [Charge.from_dict(c) for c in req.server_charges]
        client = [Charge.from_dict(c) for c in req.client_charges]
    except (KeyError, ValueError, TypeError) as e:
        raise _bad_request("INVALID_CHARGE", e)
    return {"charges": [c.to_dict() for c in resolve_folio_charges(server, client)]}


class RoomStatusResolveRequest(BaseModel):
    server_data: Dict[str, Any]
    client_data: Dict[str, Any]


@router.post("/resolve/room-status")
async def resolve_room_status(req: RoomStatusResolveRequest):
    try:
        conflict = StatusConflict(
            server_data=EntityVersion.from_dict(req.server_data),
            client_data=EntityVersion.from_dict(req.client_data),
        )
    except KeyError as e:
        raise _bad_request("INVALID_VERSION", ActionValidationError(f"missing field {e}"))
    except ValueError as e:
        raise _bad_request("INVALID_VERSION", e)
    return resolve_room_status_conflict(conflict).to_dict()


class CacheWriteRequest(BaseModel):
    table_name: str
    data: Any


@router.put("/cache/{key}")
async def cache_put(key: str, req: CacheWriteRequest):
    db.cache_data(key, req.data, req.table_name)
    return {"ok": True}


@router.get("/cache/{key}")
async def cache_get(key: str):
    data = db.get_cached_data(key)
    if data is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": key})
    return {"key": key, "data": data}


@router.delete("/cache")
async def cache_clear(table_name: Optional[str] = Query(default=None)):
    return {"ok": True, "deleted": db.clear_cache(table_name)}
