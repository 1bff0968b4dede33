"""
storage.db
===========

Facade over the storage layer:
- storage/db_core.py      (connection + schema + shared helpers)
- storage/repo_actions.py (offline action queue)
- storage/repo_cache.py   (cached server reads)

Callers import from here so tests can monkeypatch one module.
"""

from __future__ import annotations

# Core (schema + connection helpers)
from .db_core import (  # noqa: F401
    connect,
    transaction,
    get_db_path,
    init_db,
)

# Offline action queue
from .repo_actions import (  # noqa: F401
    insert_action,
    get_action,
    list_actions,
    count_actions_by_status,
    claim_action,
    mark_action_completed,
    mark_action_expired,
    save_action_state,
    delete_action,
    purge_completed_actions,
    requeue_failed_actions,
    reset_stale_processing_actions,
)

# Cache
from .repo_cache import (  # noqa: F401
    cache_data,
    get_cached_data,
    list_cache_entries,
    clear_cache,
)
