from __future__ import annotations

from fastapi import APIRouter, Request

from core import settings

router = APIRouter()


@router.get("/health")
async def health():
    """Basic health check for smoke tests and deployment probes."""
    return {"ok": True}


@router.get("/api/_routes")
async def routes_info(request: Request):
    app = request.app
    return {
        "routes": [
            {
                "path": getattr(r, "path", None),
                "name": getattr(r, "name", None),
                "methods": sorted(list(getattr(r, "methods", []) or [])),
            }
            for r in app.router.routes
        ]
    }


@router.get("/api/_config")
async def config_info():
    """Effective replay policy; never includes credentials."""
    return {
        "db_path": str(settings.db_path()),
        "remote_store_configured": bool(settings.remote_store_url()),
        "action_max_age_hours": settings.action_max_age_hours(),
        "default_max_retries": settings.default_max_retries(),
        "payment_max_retries": settings.payment_max_retries(),
        "sync_interval_s": settings.sync_interval_s(),
    }
