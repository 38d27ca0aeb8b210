"""
Data models for the admission pipeline.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MembershipRole(str, Enum):
    """Roles a member can hold within a team."""
    ADMIN = "admin"
    OPERATOR = "operator"
    VIEWER = "viewer"


ADMITTING_SUBSCRIPTION_STATUSES = ("active", "trialing")


@dataclass(frozen=True)
class CallerIdentity:
    """Verified caller, valid for one request."""
    user_id: str
    handle: Optional[str] = None


@dataclass(frozen=True)
class Team:
    """Billing and isolation unit."""
    id: str
    name: str
    owner_identity: str


@dataclass(frozen=True)
class Membership:
    """Link between a user and a team; an active one occupies a seat."""
    id: str
    team_id: str
    user_id: str
    role: MembershipRole
    seat_active: bool = True
    team: Optional[Team] = None


@dataclass(frozen=True)
class Subscription:
    """Team subscription."""
    id: str
    team_id: str
    status: str
    seats_allowed: int
    current_period_end: Optional[datetime] = None
    plan_name: Optional[str] = None

    def __post_init__(self):
        if self.seats_allowed < 0:
            raise ValueError("seats_allowed must be >= 0")

    @property
    def admits(self) -> bool:
        return self.status in ADMITTING_SUBSCRIPTION_STATUSES


@dataclass(frozen=True)
class AdmissionContext:
    """Entitlement state assembled for a single request."""
    identity: CallerIdentity
    team: Team
    membership: Membership
    subscription: Subscription
    seats_used: int


@dataclass
class UsageAggregate:
    """Daily usage totals for a team."""
    team_id: str
    usage_date: date
    tokens_used: int = 0
    requests_count: int = 0


@dataclass(frozen=True)
class WindowCount:
    """Counter value after an increment of a rate window."""
    count: int
    created: bool


@dataclass(frozen=True)
class RateDecision:
    """Outcome of a rate limit check. ``reset_at`` is epoch milliseconds."""
    allowed: bool
    remaining: int
    reset_at: int
    limit: int
    fallback: bool = False

    def retry_after_seconds(self, now_ms: int) -> int:
        """Whole seconds until the window resets, never less than one."""
        return max(1, math.ceil((self.reset_at - now_ms) / 1000))


@dataclass(frozen=True)
class UpstreamReply:
    """Text and token count returned by the model endpoint."""
    text: str
    total_tokens: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.text


class ChatMessage(BaseModel):
    """One line of chat context."""
    author: Optional[str] = None
    text: Optional[str] = None


class AnalyzeRequest(BaseModel):
    """Inbound body for reply drafting."""
    messages: List[ChatMessage] = Field(default_factory=list)
    tone: Optional[str] = None
    length: Optional[str] = None


class AnalyzeResponse(BaseModel):
    """Successful reply."""
    reply: str


@dataclass
class PipelineResult:
    """Reply text plus the admission details used to produce it."""
    reply: str
    context: AdmissionContext
    rate: RateDecision
    total_tokens: Optional[int] = None
