"""
In-process record store.

Used for local development (``ASSIST_STORE_BACKEND=memory``) and tests.
Increments are serialized per key with an ``asyncio.Lock``.
"""

import asyncio
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from ..domain.models import (
    ADMITTING_SUBSCRIPTION_STATUSES,
    CallerIdentity,
    Membership,
    Subscription,
    Team,
    UsageAggregate,
    WindowCount,
)
from ..identity.stores import IdentityStore
from .base import RecordStore


class InMemoryRecordStore(RecordStore, IdentityStore):
    """Dictionary-backed store; also resolves registered session tokens."""

    PRUNE_EVERY = 1000

    def __init__(self):
        self.teams: Dict[str, Team] = {}
        self.memberships: Dict[str, Membership] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.usage: Dict[Tuple[str, date], UsageAggregate] = {}
        self.windows: Dict[Tuple[str, int], int] = {}
        self.tokens: Dict[str, CallerIdentity] = {}
        self._locks: Dict[Tuple, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._window_calls = 0

    # Seeding

    def add_team(self, team: Team) -> Team:
        self.teams[team.id] = team
        return team

    def add_membership(self, membership: Membership) -> Membership:
        self.memberships[membership.id] = membership
        return membership

    def add_subscription(self, subscription: Subscription) -> Subscription:
        self.subscriptions[subscription.id] = subscription
        return subscription

    def register_token(self, token: str, identity: CallerIdentity) -> None:
        self.tokens[token] = identity

    # IdentityStore

    async def lookup_identity(self, token: str) -> Optional[CallerIdentity]:
        return self.tokens.get(token)

    # RecordStore

    async def find_active_memberships(self, user_id: str) -> List[Membership]:
        found = [
            m for m in self.memberships.values()
            if m.user_id == user_id and m.seat_active
        ]
        return sorted(found, key=lambda m: m.id)

    async def find_team(self, team_id: str) -> Optional[Team]:
        return self.teams.get(team_id)

    async def find_active_subscription(
        self, team_id: str, statuses: Sequence[str] = ADMITTING_SUBSCRIPTION_STATUSES
    ) -> Optional[Subscription]:
        candidates = sorted(
            (s for s in self.subscriptions.values() if s.team_id == team_id and s.status in statuses),
            key=lambda s: s.id,
        )
        return candidates[0] if candidates else None

    async def count_active_memberships(self, team_id: str) -> int:
        return sum(1 for m in self.memberships.values() if m.team_id == team_id and m.seat_active)

    async def get_and_increment_window_counter(
        self, subject_id: str, window_start: int, limit: int, window_ms: int
    ) -> WindowCount:
        key = (subject_id, window_start)
        self._maybe_prune(window_start, window_ms)
        async with self._locks[("window",) + key]:
            created = key not in self.windows
            self.windows[key] = min(self.windows.get(key, 0) + 1, limit + 1)
            return WindowCount(count=self.windows[key], created=created)

    def _maybe_prune(self, window_start: int, window_ms: int) -> None:
        self._window_calls += 1
        if self._window_calls % self.PRUNE_EVERY == 0:
            self.prune_windows(window_start - window_ms)

    def prune_windows(self, before_window: int) -> int:
        """Drop counters and their locks for windows older than ``before_window``."""
        stale = [key for key in self.windows if key[1] < before_window]
        for key in stale:
            del self.windows[key]
            self._locks.pop(("window",) + key, None)
        return len(stale)

    async def upsert_usage_aggregate(
        self, team_id: str, usage_date: date, tokens_delta: int, requests_delta: int = 1
    ) -> None:
        key = (team_id, usage_date)
        async with self._locks[("usage",) + key]:
            aggregate = self.usage.get(key)
            if aggregate is None:
                self.usage[key] = UsageAggregate(team_id, usage_date, tokens_delta, requests_delta)
            else:
                aggregate.tokens_used += tokens_delta
                aggregate.requests_count += requests_delta

    async def get_usage_aggregate(self, team_id: str, usage_date: date) -> Optional[UsageAggregate]:
        return self.usage.get((team_id, usage_date))
