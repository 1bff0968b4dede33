#!/usr/bin/env python3
from __future__ import annotations

import os
import sys

# Ensure project root is importable regardless of cwd/PYTHONPATH.
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import argparse
import json
import logging
import time

from cloud.remote_store import RestRemoteStore
from core import settings
from storage import db
from sync.service import OfflineSyncService

logger = logging.getLogger(__name__)


def _emit(obj: dict) -> None:
    print(json.dumps(obj, ensure_ascii=False), flush=True)


def run_once(svc: OfflineSyncService, *, retry_failed: bool, purge_completed: bool) -> dict:
    requeued = svc.retry_failed_actions() if retry_failed else 0
    result = svc.sync_pending_actions()
    purged = db.purge_completed_actions() if purge_completed else 0
    return {"result": result.to_dict(), "requeued": requeued, "purged": purged, "stats": db.count_actions_by_status()}


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Replay queued front-desk offline actions against the hosted store.")
    p.add_argument("--stats", action="store_true", help="print queue statistics and exit")
    p.add_argument("--loop", action="store_true", help="keep replaying every OFFLINE_SYNC_INTERVAL_S seconds")
    p.add_argument("--retry-failed", action="store_true", help="give failed actions a fresh retry budget first")
    p.add_argument("--purge-completed", action="store_true", help="delete completed actions after the pass")
    args = p.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    db.init_db()

    if args.stats:
        _emit({"stats": db.count_actions_by_status()})
        return 0

    if not settings.remote_store_url():
        _emit({"skipped": True, "reason": "remote_store_not_configured", "stats": db.count_actions_by_status()})
        return 2

    svc = OfflineSyncService(store_factory=RestRemoteStore.from_env, online=True)

    if not args.loop:
        out = run_once(svc, retry_failed=args.retry_failed, purge_completed=args.purge_completed)
        _emit(out)
        return 0 if out["result"]["success"] else 1

    interval = settings.sync_interval_s()
    logger.info(f"offline_sync loop interval_s={interval}")
    try:
        while True:
            _emit(run_once(svc, retry_failed=args.retry_failed, purge_completed=args.purge_completed))
            time.sleep(interval)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
