"""
Entitlement resolution: membership, team, subscription and seat capacity.
"""

from typing import Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.errors import (
    EntitlementsUnavailableError,
    SeatLimitReachedError,
    StoreError,
    SubscriptionInactiveError,
    TeamMembershipMissingError,
    TeamMissingError,
)
from ..domain.models import ADMITTING_SUBSCRIPTION_STATUSES, AdmissionContext, CallerIdentity
from ..persistence.base import RecordStore


class EntitlementResolver:
    """Builds the AdmissionContext for a verified caller.

    Read-only against the record store. The seat check counts active
    memberships and compares with the subscription without any lock, so two
    members activated concurrently can both pass; seat accounting is only
    eventually consistent.
    """

    def __init__(self, store: RecordStore, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("assist.entitlements.resolver")

    async def resolve(self, identity: CallerIdentity) -> AdmissionContext:
        try:
            return await self._resolve(identity)
        except StoreError as e:
            self.logger.error("Entitlement lookup failed", operation=e.operation, error=str(e))
            raise EntitlementsUnavailableError(details={"operation": e.operation}) from e

    async def _resolve(self, identity: CallerIdentity) -> AdmissionContext:
        memberships = await self.store.find_active_memberships(identity.user_id)
        if not memberships:
            raise TeamMembershipMissingError(details={"user_id": identity.user_id})

        # Lowest membership id wins.
        membership = min(memberships, key=lambda m: m.id)
        if len(memberships) > 1:
            self.logger.warning(
                "membership_inconsistency",
                user_id=identity.user_id,
                membership_ids=[m.id for m in memberships],
                selected=membership.id,
            )
            if self.metrics:
                self.metrics.increment_counter("membership_inconsistencies_total")

        team = membership.team or await self.store.find_team(membership.team_id)
        if team is None:
            raise TeamMissingError(details={"team_id": membership.team_id})

        subscription = await self.store.find_active_subscription(team.id, ADMITTING_SUBSCRIPTION_STATUSES)
        if subscription is None:
            raise SubscriptionInactiveError(details={"team_id": team.id})

        seats_used = await self.store.count_active_memberships(team.id)
        if seats_used >= subscription.seats_allowed:
            raise SeatLimitReachedError(
                details={"team_id": team.id, "seats_used": seats_used, "seats_allowed": subscription.seats_allowed}
            )

        return AdmissionContext(
            identity=identity,
            team=team,
            membership=membership,
            subscription=subscription,
            seats_used=seats_used,
        )
