"""
Fixed window rate limiter for the Assist service.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..domain.models import RateDecision, WindowCount
from ..persistence.base import WindowCounter

DEFAULT_LIMIT = 30
WINDOW_MS = 60_000


def now_ms() -> int:
    return int(time.time() * 1000)


def window_start_for(timestamp_ms: int, window_ms: int) -> int:
    return (timestamp_ms // window_ms) * window_ms


class LocalWindowCounter:
    """Process-local fixed window counters.

    The read-modify-write for a (subject, window) pair happens under one
    lock with no awaits inside, so it is atomic for coroutines and threads.
    Each process counts on its own.
    """

    def __init__(self):
        self._counts: Dict[str, Tuple[int, int]] = {}
        self._lock = threading.Lock()

    def increment(self, subject_id: str, window_start: int, limit: int) -> WindowCount:
        with self._lock:
            current_window, count = self._counts.get(subject_id, (None, 0))
            created = current_window != window_start
            if created:
                count = 0
            count = min(count + 1, limit + 1)
            self._counts[subject_id] = (window_start, count)
            return WindowCount(count=count, created=created)

    def prune(self, before_window: int) -> int:
        """Drop counters for windows older than ``before_window``."""
        with self._lock:
            stale = [key for key, (window, _) in self._counts.items() if window < before_window]
            for key in stale:
                del self._counts[key]
            return len(stale)

    def __len__(self) -> int:
        return len(self._counts)


class FixedWindowRateLimiter:
    """Per-subject request budget over fixed, clock-aligned windows.

    A burst that straddles a window boundary can be admitted up to twice the
    limit. When the shared counter store fails, decisions fall back to
    per-process counters, so with N instances the effective limit becomes
    ``limit * N`` until the store recovers.
    """

    PRUNE_EVERY = 1000

    def __init__(
        self,
        counter: Optional[WindowCounter],
        *,
        default_limit: int = DEFAULT_LIMIT,
        window_ms: int = WINDOW_MS,
        clock: Callable[[], int] = now_ms,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.counter = counter
        self.default_limit = default_limit
        self.window_ms = window_ms
        self.clock = clock
        self.metrics = metrics
        self.local = LocalWindowCounter()
        self.logger = get_logger("assist.rate_limiter")
        self._local_calls = 0

    @staticmethod
    def make_subject(user_id: str) -> str:
        return f"analyze:{user_id}"

    async def admit(self, subject_id: str, limit: Optional[int] = None, window_ms: Optional[int] = None) -> RateDecision:
        """Count one request for ``subject_id`` and decide whether it may proceed."""
        limit = self.default_limit if limit is None else limit
        window_ms = self.window_ms if window_ms is None else window_ms
        window_start = window_start_for(self.clock(), window_ms)

        fallback = self.counter is None
        if not fallback:
            try:
                result = await self.counter.get_and_increment_window_counter(
                    subject_id, window_start, limit, window_ms
                )
            except Exception as e:
                self.logger.warning(
                    "Rate limit store unavailable, using local counter",
                    subject_id=subject_id,
                    error=str(e),
                )
                fallback = True

        if fallback:
            result = self._count_locally(subject_id, window_start, limit)

        decision = self._decide(result.count, limit, window_start + window_ms, fallback)
        self._record(decision, subject_id)
        return decision

    def _count_locally(self, subject_id: str, window_start: int, limit: int) -> WindowCount:
        self._local_calls += 1
        if self._local_calls % self.PRUNE_EVERY == 0:
            self.local.prune(window_start)
        return self.local.increment(subject_id, window_start, limit)

    @staticmethod
    def _decide(count: int, limit: int, reset_at: int, fallback: bool) -> RateDecision:
        if count > limit:
            return RateDecision(allowed=False, remaining=0, reset_at=reset_at, limit=limit, fallback=fallback)
        return RateDecision(
            allowed=True,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            limit=limit,
            fallback=fallback,
        )

    def _record(self, decision: RateDecision, subject_id: str) -> None:
        if not decision.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                subject_id=subject_id,
                limit=decision.limit,
                reset_at=decision.reset_at,
            )
        if self.metrics:
            self.metrics.increment_counter(
                "rate_limit_decisions_total",
                decision="allowed" if decision.allowed else "denied",
                path="local" if decision.fallback else "store",
            )
