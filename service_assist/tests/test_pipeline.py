"""
Unit tests for RequestPipeline.
"""

import asyncio
from datetime import date

import httpx
import pytest
from unittest.mock import AsyncMock

from service_assist.app.domain.pipeline import RequestPipeline
from service_assist.app.entitlements.resolver import EntitlementResolver
from service_assist.app.identity.verifier import IdentityVerifier
from service_assist.app.persistence.memory import InMemoryRecordStore
from service_assist.app.ratelimit.fixed_window import FixedWindowRateLimiter
from service_assist.app.upstream.client import UpstreamClient
from service_assist.app.usage.accountant import UsageAccountant
from shared.errors import (
    DeadlineExceededError,
    EmptyUpstreamReplyError,
    IdentityUnavailableError,
    InvalidCredentialError,
    InvalidRequestError,
    MissingCredentialError,
    RateLimitError,
    SeatLimitReachedError,
    UpstreamTimeoutError,
)
from shared.test_helpers import analyze_payloads, upstream_payloads

from .factories import TOKEN, seed_team

TODAY = date(2026, 3, 14)
NOW_MS = 1_700_000_050_000


def make_pipeline(store, handler, metrics=None, *, limit=30, upstream_timeout=5.0, request_deadline=10.0,
                  identity_store=None):
    upstream = UpstreamClient(
        "test-key",
        base_url="https://models.local/v1beta",
        client=httpx.AsyncClient(base_url="https://models.local/v1beta", transport=httpx.MockTransport(handler)),
        metrics=metrics,
    )
    return RequestPipeline(
        IdentityVerifier(identity_store or store),
        EntitlementResolver(store, metrics=metrics),
        FixedWindowRateLimiter(store, default_limit=limit, clock=lambda: NOW_MS, metrics=metrics),
        upstream,
        UsageAccountant(store, metrics=metrics, today=lambda: TODAY),
        upstream_timeout=upstream_timeout,
        request_deadline=request_deadline,
        metrics=metrics,
    )


def reply_handler(text="Sure, I can help.", tokens=42, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(200, json=upstream_payloads.reply(text, total_tokens=tokens))
    return handler


class TestRequestPipeline:
    """Test cases for RequestPipeline."""

    @pytest.mark.asyncio
    async def test_end_to_end_success(self, identity, auth_header, metrics):
        store = InMemoryRecordStore()
        seed_team(store, seats_allowed=2)
        store.register_token(TOKEN, identity)
        pipeline = make_pipeline(store, reply_handler(), metrics)

        result = await pipeline.run(analyze_payloads.body(), auth_header)
        await pipeline.drain()

        assert result.reply == "Sure, I can help."
        assert result.total_tokens == 42
        assert result.context.team.id == "team-1"
        assert result.context.seats_used == 1
        assert result.rate.remaining == 29
        aggregate = await store.get_usage_aggregate("team-1", TODAY)
        assert aggregate.tokens_used == 42
        assert aggregate.requests_count == 1
        assert metrics.get_sample_value("admission_outcomes_total", {"code": "ok"}) == 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"messages": [], "tone": "friendly"},
        analyze_payloads.body(count=31),
        {"messages": [{"author": "Alex", "text": "  \n "}], "tone": "friendly"},
    ])
    async def test_invalid_payload_rejected_before_auth(self, store, auth_header, body):
        identity_store = AsyncMock()
        calls = []
        pipeline = make_pipeline(store, reply_handler(calls=calls), identity_store=identity_store)

        with pytest.raises(InvalidRequestError):
            await pipeline.run(body, auth_header)

        identity_store.lookup_identity.assert_not_awaited()
        assert calls == []

    @pytest.mark.asyncio
    async def test_missing_credential(self, store, metrics):
        pipeline = make_pipeline(store, reply_handler(), metrics)

        with pytest.raises(MissingCredentialError):
            await pipeline.run(analyze_payloads.body(), None)
        assert metrics.get_sample_value("admission_outcomes_total", {"code": "unauthorized"}) == 1.0

    @pytest.mark.asyncio
    async def test_invalid_credential(self, store):
        pipeline = make_pipeline(store, reply_handler())

        with pytest.raises(InvalidCredentialError):
            await pipeline.run(analyze_payloads.body(), "Bearer unknown-token")

    @pytest.mark.asyncio
    async def test_identity_store_down(self, store, auth_header):
        identity_store = AsyncMock()
        identity_store.lookup_identity.side_effect = IdentityUnavailableError()
        pipeline = make_pipeline(store, reply_handler(), identity_store=identity_store)

        with pytest.raises(IdentityUnavailableError):
            await pipeline.run(analyze_payloads.body(), auth_header)

    @pytest.mark.asyncio
    async def test_seat_limit_blocks_before_upstream(self, identity, auth_header):
        full_store = InMemoryRecordStore()
        seed_team(full_store, seats_allowed=2, extra_members=1)
        full_store.register_token(TOKEN, identity)
        calls = []
        pipeline = make_pipeline(full_store, reply_handler(calls=calls))

        with pytest.raises(SeatLimitReachedError):
            await pipeline.run(analyze_payloads.body(), auth_header)
        assert calls == []

    @pytest.mark.asyncio
    async def test_rate_limited(self, store, auth_header):
        calls = []
        pipeline = make_pipeline(store, reply_handler(calls=calls), limit=2)

        await pipeline.run(analyze_payloads.body(), auth_header)
        await pipeline.run(analyze_payloads.body(), auth_header)
        with pytest.raises(RateLimitError) as exc_info:
            await pipeline.run(analyze_payloads.body(), auth_header)
        await pipeline.drain()

        assert len(calls) == 2
        # NOW_MS sits 10s into its window.
        assert exc_info.value.retry_after == 50
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_empty_reply_records_no_usage(self, store, auth_header, metrics):
        pipeline = make_pipeline(store, reply_handler(text="   ", tokens=9), metrics)

        with pytest.raises(EmptyUpstreamReplyError):
            await pipeline.run(analyze_payloads.body(), auth_header)
        await pipeline.drain()

        assert await store.get_usage_aggregate("team-1", TODAY) is None
        assert metrics.get_sample_value("admission_outcomes_total", {"code": "empty_response"}) == 1.0

    @pytest.mark.asyncio
    async def test_reply_without_token_count_records_no_usage(self, store, auth_header):
        pipeline = make_pipeline(store, reply_handler(tokens=None))

        result = await pipeline.run(analyze_payloads.body(), auth_header)
        await pipeline.drain()

        assert result.reply == "Sure, I can help."
        assert await store.get_usage_aggregate("team-1", TODAY) is None

    @pytest.mark.asyncio
    async def test_upstream_timeout_is_distinct_from_deadline(self, store, auth_header):
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json=upstream_payloads.reply("late", total_tokens=1))

        pipeline = make_pipeline(store, slow, upstream_timeout=0.1, request_deadline=2.0)

        with pytest.raises(UpstreamTimeoutError):
            await pipeline.run(analyze_payloads.body(), auth_header)

    @pytest.mark.asyncio
    async def test_request_deadline(self, store, auth_header):
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json=upstream_payloads.reply("late", total_tokens=1))

        pipeline = make_pipeline(store, slow, upstream_timeout=3.0, request_deadline=0.1)

        with pytest.raises(DeadlineExceededError) as exc_info:
            await pipeline.run(analyze_payloads.body(), auth_header)
        assert exc_info.value.code == "deadline_exceeded"

    @pytest.mark.asyncio
    async def test_usage_failure_does_not_affect_reply(self, store, auth_header):
        pipeline = make_pipeline(store, reply_handler())
        pipeline.accountant.store = AsyncMock()
        pipeline.accountant.store.upsert_usage_aggregate.side_effect = RuntimeError("store offline")

        result = await pipeline.run(analyze_payloads.body(), auth_header)
        await pipeline.drain()

        assert result.reply == "Sure, I can help."
        assert pipeline.pending_usage == 0
