"""
Caller authentication: bearer header parsing and identity stores.
"""

from .stores import GoTrueIdentityStore, IdentityStore, JWTIdentityStore
from .verifier import IdentityVerifier

__all__ = ["IdentityStore", "GoTrueIdentityStore", "JWTIdentityStore", "IdentityVerifier"]
