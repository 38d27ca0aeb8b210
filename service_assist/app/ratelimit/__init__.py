"""
Rate limiting package for the Assist service.

Holds the fixed window limiter, its process-local fallback counters, and
the Redis window counter backend.
"""

from .fixed_window import FixedWindowRateLimiter, LocalWindowCounter
from .redis_counter import RedisWindowCounter

__all__ = ["FixedWindowRateLimiter", "LocalWindowCounter", "RedisWindowCounter"]
