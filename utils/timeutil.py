# utils/timeutil.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Union

Timestamp = Union[datetime, str]


def utc_now() -> datetime:
    """Timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(ts: Timestamp) -> datetime:
    """Coerce an ISO string or datetime into an aware UTC datetime.

    Naive values are treated as UTC. A trailing 'Z' is accepted.
    Raises ValueError on anything unparsable; callers must not guess a default.
    """
    if isinstance(ts, datetime):
        dt = ts
    elif isinstance(ts, str):
        s = ts.strip()
        if not s:
            raise ValueError("empty timestamp")
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    else:
        raise ValueError(f"unsupported timestamp type: {type(ts).__name__}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_millis(ts: Timestamp) -> int:
    return int(round(parse_timestamp(ts).timestamp() * 1000))


def to_iso(ts: Timestamp) -> str:
    return parse_timestamp(ts).isoformat(timespec="milliseconds")
