"""
Async client for the Gemini ``generateContent`` endpoint.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.errors import UpstreamError, UpstreamTimeoutError
from ..domain.models import UpstreamReply

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-1.5-flash"


class UpstreamClient:
    """Single-attempt completion calls with a hard deadline.

    Generation parameters are fixed at construction. Retrying is left to the
    caller; this client never retries.
    """

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.4,
        max_output_tokens: int = 512,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.metrics = metrics
        self.logger = get_logger("assist.upstream")
        self._client = client or httpx.AsyncClient(base_url=self.base_url)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def build_body(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

    async def complete(self, prompt: str, timeout: float) -> UpstreamReply:
        """Send ``prompt`` and return the reply, or fail within ``timeout`` seconds."""
        if not self.api_key:
            self._count("error")
            raise UpstreamError(reason="upstream API key is not configured")

        started = time.monotonic()
        try:
            response = await asyncio.wait_for(self._post(prompt, timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            self._count("timeout")
            self.logger.warning("Upstream request timed out", timeout=timeout)
            raise UpstreamTimeoutError(timeout) from exc
        except httpx.HTTPError as exc:
            self._count("error")
            self.logger.error("Upstream request failed", error=str(exc))
            raise UpstreamError(reason=str(exc)) from exc
        finally:
            if self.metrics:
                self.metrics.observe_histogram("upstream_duration_seconds", time.monotonic() - started)

        if not response.is_success:
            self._count("error")
            self.logger.error(
                "Upstream returned an error",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamError(status=response.status_code, body=response.text)

        try:
            payload = response.json()
        except ValueError as exc:
            self._count("error")
            raise UpstreamError(status=response.status_code, body=response.text, reason="invalid JSON") from exc

        reply = self.parse_reply(payload)
        self._count("empty" if reply.is_empty else "ok")
        return reply

    async def _post(self, prompt: str, timeout: float) -> httpx.Response:
        return await self._client.post(
            f"/models/{self.model}:generateContent",
            params={"key": self.api_key},
            json=self.build_body(prompt),
            timeout=timeout,
        )

    @staticmethod
    def parse_reply(payload: Any) -> UpstreamReply:
        """Pull the first candidate's first text part and the token total."""
        text = ""
        total_tokens = None
        if not isinstance(payload, dict):
            return UpstreamReply(text=text, total_tokens=total_tokens)

        candidates = payload.get("candidates")
        candidate = candidates[0] if isinstance(candidates, list) and candidates else None
        content = candidate.get("content") if isinstance(candidate, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        part = parts[0] if isinstance(parts, list) and parts else None
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            text = part["text"].strip()

        usage = payload.get("usageMetadata")
        if isinstance(usage, dict) and isinstance(usage.get("totalTokenCount"), int):
            total_tokens = usage["totalTokenCount"]
        return UpstreamReply(text=text, total_tokens=total_tokens)

    def _count(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("upstream_requests_total", outcome=outcome)
