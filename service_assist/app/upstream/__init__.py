"""
Upstream model client for the Assist service.
"""

from .client import UpstreamClient

__all__ = ["UpstreamClient"]
