# backoff.py
"""
Stackmate – Backoff
===================

Retry policy plus the pure delay arithmetic used by the API client:
jittered exponential backoff and ``Retry-After`` parsing.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

MIN_DELAY_MS = 100


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10_000
    backoff_factor: float = 2.0
    respect_retry_after: bool = True
    limit_concurrency: bool = True
    max_concurrent: int = 4
    min_gap_ms: int = 120

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_factor <= 1:
            raise ValueError("backoff_factor must be > 1")
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if self.min_gap_ms < 0:
            raise ValueError("min_gap_ms must be >= 0")

    @classmethod
    def from_config(cls, configuration: Any) -> "RetryPolicy":
        get = configuration.get_config_value
        return cls(
            max_retries=int(get("HTTP_MAX_RETRIES", 3)),
            initial_delay_ms=int(get("HTTP_INITIAL_DELAY_MS", 1000)),
            max_delay_ms=int(get("HTTP_MAX_DELAY_MS", 10_000)),
            backoff_factor=float(get("HTTP_BACKOFF_FACTOR", 2.0)),
            respect_retry_after=bool(get("HTTP_RESPECT_RETRY_AFTER", True)),
            limit_concurrency=bool(get("HTTP_LIMIT_CONCURRENCY", True)),
            max_concurrent=int(get("HTTP_MAX_CONCURRENT", 4)),
            min_gap_ms=int(get("HTTP_MIN_GAP_MS", 120)),
        )

    def with_overrides(self, **changes: Any) -> "RetryPolicy":
        return replace(self, **changes)


def next_delay(
    previous_delay_ms: float,
    factor: float,
    max_delay_ms: float,
    rng: random.Random | Any = random,
) -> float:
    """Grow the delay by ``factor``, cap it, then jitter into ``[base/2, base]``."""
    base = min(previous_delay_ms * factor, max_delay_ms)
    return max(float(MIN_DELAY_MS), rng.uniform(base / 2, base))


def clamp_delay(delay_ms: float, max_delay_ms: float) -> float:
    return min(max(float(delay_ms), float(MIN_DELAY_MS)), max(float(max_delay_ms), float(MIN_DELAY_MS)))


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Convert a ``Retry-After`` header into milliseconds.

    Integer seconds and HTTP-dates are accepted. A date in the past yields 0;
    anything absent or unparseable yields None so the caller can fall back to
    its computed backoff.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text.isdigit():
        return int(text) * 1000.0

    try:
        target = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if target is None:
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    delta_ms = (target - now).total_seconds() * 1000.0
    return delta_ms if delta_ms > 0 else 0.0
