"""
Assist service for the Assist Access Layer.

Drafts chat replies through the upstream model for callers that hold an
active, seated team subscription and are within their rate limit.
"""

from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import InvalidJsonError

from .domain.models import AnalyzeResponse
from .domain.pipeline import RequestPipeline
from .entitlements.resolver import EntitlementResolver
from .identity.stores import GoTrueIdentityStore, IdentityStore, JWTIdentityStore
from .identity.verifier import IdentityVerifier
from .persistence.base import RecordStore, WindowCounter
from .persistence.memory import InMemoryRecordStore
from .persistence.postgres import PostgreSQLRecordStore
from .ratelimit.fixed_window import FixedWindowRateLimiter
from .ratelimit.redis_counter import RedisWindowCounter
from .upstream.client import UpstreamClient
from .usage.accountant import UsageAccountant

SERVICE_NAME = "assist"
SERVICE_PORT = 8020


class AssistService(BaseService):
    """Assist service implementation.

    Backends are chosen from configuration; any of them can be passed in
    directly, which is how tests run the service without network access.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[RecordStore] = None,
        identity_store: Optional[IdentityStore] = None,
        window_counter: Optional[WindowCounter] = None,
        upstream: Optional[UpstreamClient] = None,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        self.store = store or self._build_store()
        self.identity_store = identity_store or self._build_identity_store()
        self.window_counter = window_counter if window_counter is not None else self._build_window_counter()
        self.upstream = upstream or UpstreamClient(
            self.config.upstream_api_key,
            base_url=self.config.upstream_base_url,
            model=self.config.upstream_model,
            temperature=self.config.upstream_temperature,
            max_output_tokens=self.config.upstream_max_output_tokens,
            metrics=self.metrics,
        )

        self.rate_limiter = FixedWindowRateLimiter(
            self.window_counter,
            default_limit=self.config.rate_limit_per_window,
            window_ms=self.config.rate_limit_window_ms,
            metrics=self.metrics,
        )
        self.pipeline = RequestPipeline(
            IdentityVerifier(self.identity_store),
            EntitlementResolver(self.store, metrics=self.metrics),
            self.rate_limiter,
            self.upstream,
            UsageAccountant(self.store, metrics=self.metrics),
            upstream_timeout=self.config.upstream_timeout_seconds,
            request_deadline=self.config.request_deadline_seconds,
            max_messages=self.config.max_messages,
            metrics=self.metrics,
        )

        self._setup_assist_routes()

    def _build_store(self) -> RecordStore:
        if self.config.store_backend == "memory":
            self.logger.warning("Using in-memory record store; data is lost on restart")
            return InMemoryRecordStore()
        return PostgreSQLRecordStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
        )

    def _build_identity_store(self) -> IdentityStore:
        backend = self.config.identity_backend
        if backend == "jwt":
            if not self.config.jwt_secret:
                raise ValueError("ASSIST_JWT_SECRET is required when identity_backend is 'jwt'")
            return JWTIdentityStore(self.config.jwt_secret, audience=self.config.jwt_audience)
        if backend == "memory":
            if not isinstance(self.store, IdentityStore):
                raise ValueError("identity_backend 'memory' requires store_backend 'memory'")
            return self.store
        return GoTrueIdentityStore(
            self.config.identity_url,
            self.config.identity_api_key,
            timeout=self.config.identity_timeout_seconds,
        )

    def _build_window_counter(self) -> Optional[WindowCounter]:
        backend = self.config.rate_limit_backend
        if backend == "redis":
            return RedisWindowCounter(self.config.redis_url)
        if backend == "local":
            return None
        return self.store

    def _setup_assist_routes(self):
        """Set up assist-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Assist Access Layer - Assist Service",
                "version": "1.0.0",
                "capabilities": ["reply_drafting", "entitlements", "rate_limiting", "usage_accounting"],
            }

        @self.app.post("/api/analyze", response_model=AnalyzeResponse)
        async def analyze(request: Request):
            """Draft one reply for the supplied chat context."""
            try:
                payload = await request.json()
            except ValueError as e:
                raise InvalidJsonError() from e
            if not isinstance(payload, dict):
                raise InvalidJsonError("Request body must be a JSON object")

            result = await self.pipeline.run(payload, request.headers.get("Authorization"))

            return JSONResponse(
                content=AnalyzeResponse(reply=result.reply).model_dump(),
                headers={
                    "X-RateLimit-Limit": str(result.rate.limit),
                    "X-RateLimit-Remaining": str(result.rate.remaining),
                    "X-RateLimit-Reset": str(result.rate.retry_after_seconds(self.rate_limiter.clock())),
                },
            )

    async def _on_startup(self):
        await self.store.start()
        self.logger.info(
            "Assist service started",
            store_backend=type(self.store).__name__,
            identity_backend=type(self.identity_store).__name__,
            rate_limit_backend=type(self.window_counter).__name__ if self.window_counter else "local",
        )

    async def _on_shutdown(self):
        await self.pipeline.drain()
        await self.upstream.close()
        if self.identity_store is not self.store:
            await self.identity_store.close()
        if isinstance(self.window_counter, RedisWindowCounter):
            await self.window_counter.close()
        await self.store.stop()
        self.logger.info("Assist service stopped")

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check record store and rate limit store health."""
        dependencies = {"record_store": "ok" if await self.store.health_check() else "error"}
        if isinstance(self.window_counter, RedisWindowCounter):
            dependencies["redis"] = "ok" if await self.window_counter.health_check() else "error"
        return dependencies


def create_app(config: Optional[ServiceConfig] = None):
    """Create assist service application."""
    service = AssistService(config)
    return service.app


if __name__ == "__main__":
    service = AssistService()
    service.run()
