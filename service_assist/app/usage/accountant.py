"""
Best-effort daily usage accounting.
"""

from datetime import date, datetime, timezone
from typing import Callable, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..persistence.base import RecordStore


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UsageAccountant:
    """Adds tokens and one request to the team's aggregate for the UTC day.

    A failed write is logged and counted, never raised: the caller has already
    been served and losing one increment is acceptable.
    """

    def __init__(
        self,
        store: RecordStore,
        metrics: Optional[MetricsCollector] = None,
        today: Callable[[], date] = utc_today,
    ):
        self.store = store
        self.metrics = metrics
        self.today = today
        self.logger = get_logger("assist.usage")

    async def record_usage(self, team_id: str, tokens: Optional[int]) -> bool:
        """Record one request's usage. Returns whether a write happened."""
        if not tokens or tokens <= 0:
            self._count("skipped")
            return False

        usage_date = self.today()
        try:
            await self.store.upsert_usage_aggregate(team_id, usage_date, tokens, 1)
        except Exception as e:
            self._count("failed")
            self.logger.error(
                "Usage tracking failed",
                team_id=team_id,
                usage_date=usage_date.isoformat(),
                tokens=tokens,
                error=str(e),
            )
            return False

        self._count("ok")
        self.logger.debug("Usage recorded", team_id=team_id, tokens=tokens)
        return True

    def _count(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("usage_records_total", outcome=outcome)
