"""
Record store contract consumed by the admission pipeline.

Implementations raise ``shared.errors.StoreError`` for any backend failure;
"not found" is expressed with ``None`` or an empty list, never an exception.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import List, Optional, Sequence

from ..domain.models import (
    ADMITTING_SUBSCRIPTION_STATUSES,
    Membership,
    Subscription,
    Team,
    UsageAggregate,
    WindowCount,
)


class WindowCounter(ABC):
    """Per-(subject, window) counter used by the rate limiter."""

    @abstractmethod
    async def get_and_increment_window_counter(
        self, subject_id: str, window_start: int, limit: int, window_ms: int
    ) -> WindowCount:
        """Atomically add one to the window's count and return the new value.

        ``window_start`` is epoch milliseconds. Backends may cap the stored
        count at ``limit + 1``; callers only compare it against ``limit``.
        """


class RecordStore(WindowCounter):
    """Team, membership, subscription and usage records."""

    @abstractmethod
    async def find_active_memberships(self, user_id: str) -> List[Membership]:
        """Active memberships for a user ordered by membership id."""

    @abstractmethod
    async def find_team(self, team_id: str) -> Optional[Team]:
        ...

    @abstractmethod
    async def find_active_subscription(
        self, team_id: str, statuses: Sequence[str] = ADMITTING_SUBSCRIPTION_STATUSES
    ) -> Optional[Subscription]:
        ...

    @abstractmethod
    async def count_active_memberships(self, team_id: str) -> int:
        ...

    @abstractmethod
    async def upsert_usage_aggregate(
        self, team_id: str, usage_date: date, tokens_delta: int, requests_delta: int = 1
    ) -> None:
        """Create the day's aggregate or add the deltas to it, atomically."""

    @abstractmethod
    async def get_usage_aggregate(self, team_id: str, usage_date: date) -> Optional[UsageAggregate]:
        ...

    async def start(self) -> None:
        """Open connections."""

    async def stop(self) -> None:
        """Close connections."""

    async def health_check(self) -> bool:
        return True
