"""
PostgreSQL record store for the admission pipeline.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Any, List, Optional, Sequence

import asyncpg

from shared.logging import get_logger
from shared.errors import StoreError
from ..domain.models import (
    ADMITTING_SUBSCRIPTION_STATUSES,
    Membership,
    MembershipRole,
    Subscription,
    Team,
    UsageAggregate,
    WindowCount,
)
from .base import RecordStore

STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgreSQLRecordStore(RecordStore):
    """asyncpg-backed record store.

    Reads go against the tenant tables (``teams``, ``team_members``,
    ``subscriptions``, ``usage_aggregates``). Counters are single-statement
    upserts so concurrent writers never lose increments.
    """

    PRUNE_EVERY = 1000

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10, command_timeout: float = 5.0):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("assist.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None
        self._window_calls = 0

    async def start(self):
        """Start the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
            await self._create_tables()
            self.logger.info("PostgreSQL record store started")
        except STORE_ERRORS as e:
            # Pool stays unset; every query raises StoreError until restart.
            self.logger.error("Failed to start PostgreSQL record store", error=str(e))
            self.pool = None

    async def stop(self):
        """Stop the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL record store stopped")

    async def _create_tables(self):
        """Create the rate window table; tenant tables are owned by migrations."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS rate_limits (
                    subject_id TEXT NOT NULL,
                    window_start TIMESTAMPTZ NOT NULL,
                    count INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (subject_id, window_start)
                );
            """)

    async def _fetch(self, operation: str, method: str, query: str, *args) -> Any:
        if self.pool is None:
            raise StoreError(operation, "connection pool is not available")
        try:
            async with self.pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except STORE_ERRORS as e:
            self.logger.error("Record store query failed", operation=operation, error=str(e))
            raise StoreError(operation, str(e)) from e

    async def find_active_memberships(self, user_id: str) -> List[Membership]:
        rows = await self._fetch("find_active_memberships", "fetch", """
            SELECT tm.id::text AS id, tm.team_id::text AS team_id, tm.user_id::text AS user_id,
                   tm.role, tm.seat_active,
                   t.id::text AS team_ref, t.name AS team_name, t.owner_user_id::text AS team_owner
            FROM team_members tm
            LEFT JOIN teams t ON t.id = tm.team_id
            WHERE tm.user_id::text = $1 AND tm.seat_active = TRUE
            ORDER BY tm.id::text ASC
        """, user_id)
        return [self._row_to_membership(row) for row in rows]

    async def find_team(self, team_id: str) -> Optional[Team]:
        row = await self._fetch("find_team", "fetchrow", """
            SELECT id::text AS id, name, owner_user_id::text AS owner_user_id
            FROM teams WHERE id::text = $1
        """, team_id)
        if not row:
            return None
        return Team(id=row["id"], name=row["name"], owner_identity=row["owner_user_id"])

    async def find_active_subscription(
        self, team_id: str, statuses: Sequence[str] = ADMITTING_SUBSCRIPTION_STATUSES
    ) -> Optional[Subscription]:
        row = await self._fetch("find_active_subscription", "fetchrow", """
            SELECT id::text AS id, team_id::text AS team_id, status, seats_allowed,
                   current_period_end, plan_name
            FROM subscriptions
            WHERE team_id::text = $1 AND status = ANY($2::text[])
            ORDER BY current_period_end DESC NULLS LAST, id::text ASC
            LIMIT 1
        """, team_id, list(statuses))
        if not row:
            return None
        return Subscription(
            id=row["id"],
            team_id=row["team_id"],
            status=row["status"],
            seats_allowed=row["seats_allowed"],
            current_period_end=row["current_period_end"],
            plan_name=row["plan_name"],
        )

    async def count_active_memberships(self, team_id: str) -> int:
        count = await self._fetch("count_active_memberships", "fetchval", """
            SELECT COUNT(*) FROM team_members
            WHERE team_id::text = $1 AND seat_active = TRUE
        """, team_id)
        return count or 0

    async def get_and_increment_window_counter(
        self, subject_id: str, window_start: int, limit: int, window_ms: int
    ) -> WindowCount:
        started = datetime.fromtimestamp(window_start / 1000, tz=timezone.utc)
        row = await self._fetch("get_and_increment_window_counter", "fetchrow", """
            INSERT INTO rate_limits (subject_id, window_start, count)
            VALUES ($1, $2, 1)
            ON CONFLICT (subject_id, window_start) DO UPDATE
                SET count = LEAST(rate_limits.count + 1, $3::int + 1)
            RETURNING count, (xmax = 0) AS created
        """, subject_id, started, limit)

        self._window_calls += 1
        if self._window_calls % self.PRUNE_EVERY == 0:
            await self.prune_windows(window_start - window_ms)
        return WindowCount(count=row["count"], created=row["created"])

    async def prune_windows(self, before_window: int) -> int:
        """Delete rate windows older than ``before_window``; failures are logged only."""
        cutoff = datetime.fromtimestamp(before_window / 1000, tz=timezone.utc)
        try:
            status = await self._fetch("prune_windows", "execute", """
                DELETE FROM rate_limits WHERE window_start < $1
            """, cutoff)
        except StoreError as e:
            self.logger.warning("Rate window pruning failed", error=str(e))
            return 0
        # asyncpg returns the command tag, e.g. "DELETE 12".
        return int(status.split()[-1]) if status else 0

    async def upsert_usage_aggregate(
        self, team_id: str, usage_date: date, tokens_delta: int, requests_delta: int = 1
    ) -> None:
        await self._fetch("upsert_usage_aggregate", "execute", """
            INSERT INTO usage_aggregates (team_id, usage_date, tokens_used, requests_count)
            VALUES ($1::uuid, $2, $3, $4)
            ON CONFLICT (team_id, usage_date) DO UPDATE
                SET tokens_used = usage_aggregates.tokens_used + EXCLUDED.tokens_used,
                    requests_count = usage_aggregates.requests_count + EXCLUDED.requests_count
        """, team_id, usage_date, tokens_delta, requests_delta)

    async def get_usage_aggregate(self, team_id: str, usage_date: date) -> Optional[UsageAggregate]:
        row = await self._fetch("get_usage_aggregate", "fetchrow", """
            SELECT tokens_used, requests_count FROM usage_aggregates
            WHERE team_id::text = $1 AND usage_date = $2
        """, team_id, usage_date)
        if not row:
            return None
        return UsageAggregate(
            team_id=team_id,
            usage_date=usage_date,
            tokens_used=row["tokens_used"],
            requests_count=row["requests_count"],
        )

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            await self._fetch("health_check", "fetchval", "SELECT 1")
            return True
        except StoreError:
            return False

    def _row_to_membership(self, row) -> Membership:
        team = None
        if row["team_ref"] is not None:
            team = Team(id=row["team_ref"], name=row["team_name"], owner_identity=row["team_owner"])
        return Membership(
            id=row["id"],
            team_id=row["team_id"],
            user_id=row["user_id"],
            role=MembershipRole(row["role"]),
            seat_active=row["seat_active"],
            team=team,
        )
