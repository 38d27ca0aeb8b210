"""
Shared error handling for the Assist Access Layer.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorBody(BaseModel):
    """Error payload nested under the ``error`` key."""

    code: str
    message: str
    trace_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: ErrorBody


def current_trace_id() -> Optional[str]:
    """Return the active trace id, if a span is recording."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            return f"{span_context.trace_id:032x}"
    return None


class AssistException(Exception):
    """Base exception for Assist Access Layer services."""

    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=ErrorBody(code=self.code, message=self.message, trace_id=current_trace_id())
        )


# Client input

class InvalidRequestError(AssistException):
    """Payload failed structural validation."""

    status_code = 400

    def __init__(self, message: str = "Invalid request", details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_request", message, details)


class InvalidJsonError(AssistException):
    """Request body could not be decoded as a JSON object."""

    status_code = 400

    def __init__(self, message: str = "Request body must be valid JSON", details: Optional[Dict[str, Any]] = None):
        super().__init__("invalid_json", message, details)


# Authentication

class AuthenticationError(AssistException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("unauthorized", message, details)


class MissingCredentialError(AuthenticationError):
    """No usable bearer token on the request."""

    def __init__(self, message: str = "Missing authorization token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class InvalidCredentialError(AuthenticationError):
    """Bearer token was rejected by the identity store."""

    def __init__(self, message: str = "Invalid session token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


# Entitlement

class AuthorizationError(AssistException):
    """Entitlement-related errors."""

    status_code = 403

    def __init__(self, code: str = "forbidden", message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class TeamMembershipMissingError(AuthorizationError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("team_membership_missing", "No active team membership for this user.", details)


class TeamMissingError(AuthorizationError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("team_missing", "The team for this membership could not be found.", details)


class SubscriptionInactiveError(AuthorizationError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("subscription_inactive", "No active subscription for this team.", details)


class SeatLimitReachedError(AuthorizationError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("seat_limit_reached", "All subscription seats are currently in use.", details)


# Throttling

class RateLimitError(AssistException):
    """Rate limiting errors."""

    status_code = 429
    retryable = True

    def __init__(
        self,
        retry_after: int,
        message: str = "Too many requests, please try again later.",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        super().__init__("rate_limited", message, details)


# Dependencies

class DependencyUnavailableError(AssistException):
    """A backing store needed to admit the request did not answer."""

    status_code = 503
    retryable = True


class IdentityUnavailableError(DependencyUnavailableError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("identity_unavailable", "The identity service is unavailable. Please try again later.", details)


class EntitlementsUnavailableError(DependencyUnavailableError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "entitlements_unavailable",
            "Subscription details could not be loaded. Please try again later.",
            details,
        )


class UpstreamTimeoutError(AssistException):
    """The model endpoint did not answer before the deadline."""

    status_code = 504
    retryable = True

    def __init__(self, timeout: float, details: Optional[Dict[str, Any]] = None):
        self.timeout = timeout
        super().__init__(
            "upstream_timeout",
            "The AI service took too long to respond. Please try again later.",
            {"timeout_seconds": timeout, **(details or {})},
        )


class UpstreamError(AssistException):
    """The model endpoint answered with a failure, or could not be reached."""

    status_code = 502
    retryable = True

    def __init__(self, status: Optional[int] = None, body: Optional[str] = None, reason: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(
            "ai_error",
            "The AI service is unavailable. Please try again later.",
            {"upstream_status": status, "upstream_body": body, "reason": reason},
        )


class EmptyUpstreamReplyError(AssistException):
    """The model endpoint succeeded but produced no usable text."""

    status_code = 502
    retryable = True

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("empty_response", "The AI service returned an empty response.", details)


class DeadlineExceededError(AssistException):
    """The overall request deadline elapsed before a result was available."""

    status_code = 504
    retryable = True

    def __init__(self, deadline: float):
        super().__init__(
            "deadline_exceeded",
            "The request took too long to process. Please try again later.",
            {"deadline_seconds": deadline},
        )


class StoreError(Exception):
    """Raised by record store backends when an operation fails."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")
