from __future__ import annotations

import logging
import os
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cloud.remote_store import RemoteStore, RestRemoteStore
from core import settings
from storage.db import init_db
from sync.service import OfflineSyncService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _store_factory() -> Optional[Callable[[], RemoteStore]]:
    if not settings.remote_store_url():
        return None
    return RestRemoteStore.from_env


def _configure_cors(_app: FastAPI) -> None:
    """Environment-driven CORS.

    - If CORS_ALLOW_ORIGINS is set (comma-separated), use the explicit list.
    - Otherwise, default to localhost/127.0.0.1 only.
    """
    origins_raw = (os.getenv("CORS_ALLOW_ORIGINS") or "").strip()
    origin_regex = (os.getenv("CORS_ALLOW_ORIGIN_REGEX") or "").strip()

    if origins_raw:
        origins = [o.strip() for o in origins_raw.split(",") if o.strip()]
        _app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        logger.info(f"CORS: allow_origins={origins}")
        return

    if not origin_regex:
        origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
    _app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_origin_regex=origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info(f"CORS: allow_origin_regex={origin_regex}")


def create_app(service: Optional[OfflineSyncService] = None) -> FastAPI:
    app = FastAPI(title="Front Desk Offline Sync")

    # Share the queue service with route modules via app.state
    app.state.offline = service or OfflineSyncService(store_factory=_store_factory())

    @app.on_event("startup")
    async def _startup_init():
        init_db()
        if app.state.offline._store_factory is None:
            logger.warning("REMOTE_STORE_URL not set: actions will queue but never replay")

    _configure_cors(app)

    from api.routes_meta import router as meta_router
    from api.routes_offline import router as offline_router

    app.include_router(meta_router)
    app.include_router(offline_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    reload = (os.getenv("UVICORN_RELOAD", "0").strip().lower() in {"1", "true", "yes"})

    uvicorn.run(
        "server:app",
        host=host,
        port=port,
        reload=reload,
    )
