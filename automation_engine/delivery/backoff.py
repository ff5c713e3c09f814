"""Retry delay policy."""

from __future__ import annotations

from datetime import datetime, timedelta


def compute_backoff(attempts_count: int, *, base_seconds: int, max_seconds: int) -> int:
    """Exponential delay for a notification that has failed ``attempts_count`` times before.

    ``attempts_count`` is the value before the current failure is counted, so the
    first retry waits ``base_seconds``. The result never exceeds ``max_seconds``.
    """

    if attempts_count < 0:
        raise ValueError("attempts_count must be non-negative")
    # 2**32 seconds is far past any cap.
    exponent = min(attempts_count, 32)
    return min(base_seconds * (2**exponent), max_seconds)


def next_attempt_at(now: datetime, attempts_count: int, *, base_seconds: int, max_seconds: int) -> datetime:
    return now + timedelta(seconds=compute_backoff(attempts_count, base_seconds=base_seconds, max_seconds=max_seconds))
