"""
Bearer credential verification.
"""

from typing import Optional

from shared.logging import get_logger
from shared.errors import InvalidCredentialError, MissingCredentialError
from ..domain.models import CallerIdentity
from .stores import IdentityStore


class IdentityVerifier:
    """Turns an ``Authorization`` header into a verified caller."""

    def __init__(self, store: IdentityStore):
        self.store = store
        self.logger = get_logger("assist.identity.verifier")

    @staticmethod
    def extract_credential(authorization: Optional[str]) -> str:
        """Return the token from ``Bearer <token>`` or raise MissingCredentialError."""
        if not authorization:
            raise MissingCredentialError()
        parts = authorization.split(" ")
        if len(parts) < 2 or parts[0] != "Bearer" or not parts[1]:
            raise MissingCredentialError()
        return parts[1]

    async def verify(self, credential: str) -> CallerIdentity:
        if not credential:
            raise MissingCredentialError()

        identity = await self.store.lookup_identity(credential)
        if identity is None:
            self.logger.warning("Credential rejected by identity store")
            raise InvalidCredentialError()
        return identity
