"""
Entitlement gate for the Assist service.

Resolves the caller's single active team membership, the team's admitting
subscription, and seat capacity into an AdmissionContext.
"""

from .resolver import EntitlementResolver

__all__ = ["EntitlementResolver"]
