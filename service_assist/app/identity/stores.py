"""
Identity stores: exchange a session token for the caller it belongs to.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from jose import JWTError, jwt

from shared.logging import get_logger
from shared.errors import IdentityUnavailableError
from ..domain.models import CallerIdentity


class IdentityStore(ABC):
    """Resolves session tokens. ``None`` means the token is not valid."""

    @abstractmethod
    async def lookup_identity(self, token: str) -> Optional[CallerIdentity]:
        ...

    async def close(self) -> None:
        """Release held resources."""


class GoTrueIdentityStore(IdentityStore):
    """Asks the hosted auth server who owns a token (``GET /user``)."""

    REJECTED_STATUSES = (400, 401, 403, 404)

    def __init__(self, base_url: str, api_key: Optional[str] = None, *, timeout: float = 5.0,
                 client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.logger = get_logger("assist.identity.gotrue")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def lookup_identity(self, token: str) -> Optional[CallerIdentity]:
        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            response = await self._client.get("/user", headers=headers)
        except httpx.HTTPError as exc:
            self.logger.error("Identity lookup failed", error=str(exc))
            raise IdentityUnavailableError(details={"error": str(exc)}) from exc

        if response.status_code in self.REJECTED_STATUSES:
            return None
        if response.status_code != 200:
            self.logger.error("Identity service error", status_code=response.status_code)
            raise IdentityUnavailableError(details={"status_code": response.status_code})

        try:
            payload: Dict[str, Any] = response.json()
        except ValueError as exc:
            self.logger.error("Identity service returned invalid JSON", error=str(exc))
            raise IdentityUnavailableError(details={"reason": "invalid JSON"}) from exc
        if not isinstance(payload, dict):
            self.logger.error("Identity service returned unexpected payload", payload_type=type(payload).__name__)
            raise IdentityUnavailableError(details={"reason": "unexpected payload"})

        user_id = payload.get("id")
        if not isinstance(user_id, str) or not user_id:
            return None
        return CallerIdentity(user_id=user_id, handle=payload.get("email"))


class JWTIdentityStore(IdentityStore):
    """Verifies HS256 session tokens locally with the project's JWT secret."""

    def __init__(self, secret: str, audience: Optional[str] = "authenticated", algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError("JWT identity store requires a secret")
        self.secret = secret
        self.audience = audience
        self.algorithm = algorithm
        self.logger = get_logger("assist.identity.jwt")

    async def lookup_identity(self, token: str) -> Optional[CallerIdentity]:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as exc:
            self.logger.info("Session token rejected", error=str(exc))
            return None

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            return None
        return CallerIdentity(user_id=subject, handle=claims.get("email"))
