"""
Admission pipeline for reply drafting.

Stages run strictly in order and each either advances or aborts with an
``AssistException``:

    validate -> verify identity -> resolve entitlements -> rate limit
    -> build prompt -> upstream completion -> usage accounting

Usage accounting runs in the background after the reply is available and
never affects the response.
"""

import asyncio
from typing import Any, Optional, Set

from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector
from shared.errors import (
    AssistException,
    DeadlineExceededError,
    EmptyUpstreamReplyError,
    RateLimitError,
)
from ..entitlements.resolver import EntitlementResolver
from ..identity.verifier import IdentityVerifier
from ..ratelimit.fixed_window import FixedWindowRateLimiter
from ..upstream.client import UpstreamClient
from ..usage.accountant import UsageAccountant
from .models import AnalyzeRequest, PipelineResult
from .prompt import MAX_MESSAGES, build_prompt, validate_payload


class RequestPipeline:
    """Orchestrates one reply-drafting request."""

    def __init__(
        self,
        verifier: IdentityVerifier,
        resolver: EntitlementResolver,
        rate_limiter: FixedWindowRateLimiter,
        upstream: UpstreamClient,
        accountant: UsageAccountant,
        *,
        upstream_timeout: float = 15.0,
        request_deadline: float = 20.0,
        max_messages: int = MAX_MESSAGES,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.verifier = verifier
        self.resolver = resolver
        self.rate_limiter = rate_limiter
        self.upstream = upstream
        self.accountant = accountant
        self.upstream_timeout = upstream_timeout
        self.request_deadline = request_deadline
        self.max_messages = max_messages
        self.metrics = metrics
        self.logger = get_logger("assist.pipeline")
        self._pending: Set[asyncio.Task] = set()

    async def run(self, payload: Any, authorization: Optional[str]) -> PipelineResult:
        """Admit and serve one request, raising an AssistException on rejection."""
        try:
            request = validate_payload(payload, self.max_messages)
            try:
                result = await asyncio.wait_for(
                    self._admit_and_complete(request, authorization),
                    timeout=self.request_deadline,
                )
            except asyncio.TimeoutError as e:
                self.logger.warning("Request deadline exceeded", deadline=self.request_deadline)
                raise DeadlineExceededError(self.request_deadline) from e
        except AssistException as e:
            self._count(e.code)
            raise

        self._count("ok")
        self._schedule_usage(result.context.team.id, result.total_tokens)
        return result

    async def _admit_and_complete(self, request: AnalyzeRequest, authorization: Optional[str]) -> PipelineResult:
        credential = self.verifier.extract_credential(authorization)
        identity = await self.verifier.verify(credential)
        set_user_context(user_id=identity.user_id)

        context = await self.resolver.resolve(identity)
        set_user_context(team_id=context.team.id)

        decision = await self.rate_limiter.admit(self.rate_limiter.make_subject(identity.user_id))
        if not decision.allowed:
            raise RateLimitError(
                retry_after=decision.retry_after_seconds(self.rate_limiter.clock()),
                details={"limit": decision.limit, "reset_at": decision.reset_at},
            )

        prompt = build_prompt(request.messages, request.tone or "", request.length)
        reply = await self.upstream.complete(prompt, timeout=self.upstream_timeout)
        if reply.is_empty:
            raise EmptyUpstreamReplyError()

        self.logger.info(
            "Reply drafted",
            team_id=context.team.id,
            total_tokens=reply.total_tokens,
            remaining=decision.remaining,
        )
        return PipelineResult(
            reply=reply.text,
            context=context,
            rate=decision,
            total_tokens=reply.total_tokens,
        )

    def _schedule_usage(self, team_id: str, tokens: Optional[int]) -> None:
        task = asyncio.create_task(self.accountant.record_usage(team_id, tokens))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending_usage(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled usage writes to finish."""
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self._pending.difference_update(pending)

    def _count(self, code: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("admission_outcomes_total", code=code)
