from __future__ import annotations

import secrets
import string
import time
from typing import Optional

_ALPHABET = string.ascii_lowercase + string.digits
_SUFFIX_LEN = 6


def _random_suffix(n: int = _SUFFIX_LEN) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(n))


def generate_idempotency_key(operation: str, resource_id: str, *, now_ms: Optional[int] = None) -> str:
    """Build `{operation}_{resource_id}_{millis}_{random6}`.

    The prefix keeps keys greppable in logs; the random suffix makes two
    calls in the same millisecond differ. Keys are compared for equality
    only and never split back into fields.
    """
    op = str(operation or "").strip()
    rid = str(resource_id or "").strip()
    if not op:
        raise ValueError("operation must be non-empty")
    if not rid:
        raise ValueError("resource_id must be non-empty")
    ts = int(now_ms if now_ms is not None else time.time() * 1000)
    return f"{op}_{rid}_{ts}_{_random_suffix()}"
