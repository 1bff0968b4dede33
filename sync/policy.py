from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from utils.timeutil import Timestamp, parse_timestamp, utc_now

from .models import QueuedAction

DEFAULT_MAX_AGE_HOURS = 24


def is_expired_action(
    action_timestamp: Timestamp,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """True iff the action is strictly older than `max_age_hours`.

    An action exactly at the boundary is not expired. Future timestamps
    (client clock skew) give a negative age and are never expired.
    """
    queued_at = parse_timestamp(action_timestamp)
    current = parse_timestamp(now) if now is not None else utc_now()
    return current - queued_at > timedelta(hours=max_age_hours)


def should_retry_action(
    action: QueuedAction,
    *,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    now: Optional[datetime] = None,
) -> bool:
    if action.retries_exhausted:
        return False
    return not is_expired_action(action.timestamp, max_age_hours, now=now)


def record_failure(action: QueuedAction, error: str) -> QueuedAction:
    """Return the action after one more failed replay attempt.

    retry_count never passes max_retries; once it reaches it the action is
    parked as failed and will not be claimed again.
    """
    retry_count = min(action.retry_count + 1, action.max_retries)
    status = "failed" if retry_count >= action.max_retries else "pending"
    return replace(action, retry_count=retry_count, status=status, error_message=error)
