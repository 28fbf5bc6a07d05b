"""
Retry - Backoff arithmetic shared by the tracker clients and the scheduler.

The clients use these helpers to classify HTTP responses; the batch
scheduler uses them to decide how long to wait before retrying a
TransientError.
"""

from __future__ import annotations

import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from .exceptions import AuthenticationError, PermanentError, TransientError


RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable_status_code(status_code: int) -> bool:
    """Check whether an HTTP status code signals a transient failure."""
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600


def is_retryable(exc: BaseException) -> bool:
    """Check whether an exception should be retried by the scheduler."""
    if isinstance(exc, (AuthenticationError, PermanentError)):
        return False
    return isinstance(exc, TransientError)


def calculate_delay(
    attempt: int,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.1,
    retry_after: float | None = None,
) -> float:
    """
    Calculate the delay before the next retry attempt.

    Exponential backoff: initial_delay * backoff_factor ** attempt, capped
    at max_delay, with +/- jitter applied as a fraction of the delay. A
    server-provided Retry-After always wins when it is larger.

    Args:
        attempt: Zero-based attempt number that just failed
        initial_delay: Delay after the first failure
        max_delay: Upper bound for the computed delay
        backoff_factor: Multiplier per attempt
        jitter: Random jitter fraction (0.1 = 10%)
        retry_after: Server hint in seconds, if any

    Returns:
        Delay in seconds (never negative)
    """
    delay = min(initial_delay * (backoff_factor**attempt), max_delay)

    if jitter > 0:
        delay += delay * random.uniform(-jitter, jitter)

    if retry_after is not None and retry_after > delay:
        delay = float(retry_after)

    return max(0.0, delay)


def get_retry_after(response: Any) -> float | None:
    """
    Extract a Retry-After hint from a response.

    Accepts both delta-seconds and HTTP-date forms.
    """
    headers = getattr(response, "headers", None) or {}
    value = headers.get("Retry-After")
    if value is None:
        return None

    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        pass

    try:
        when = parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
