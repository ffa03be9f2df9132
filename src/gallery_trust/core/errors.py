"""Error taxonomy shared by the trust-and-safety services.

Services raise these exceptions; the API layer renders them as
``{"error": {"code", "message", "details"}}`` with the matching HTTP status.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class TrustSafetyError(RuntimeError):
    """Base exception for all trust-and-safety failures."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        details: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = dict(details) if details else None
        self.headers = dict(headers) if headers else {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON body used for API responses."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}


class RateLimitedError(TrustSafetyError):
    """Raised when an actor exceeds a limit; retryable after waiting."""

    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many requests. Please try again later."

    def __init__(
        self,
        retry_after_seconds: int | None = None,
        message: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.retry_after_seconds = retry_after_seconds
        merged_headers = dict(headers or {})
        details: dict[str, Any] | None = None
        if retry_after_seconds is not None:
            merged_headers["Retry-After"] = str(retry_after_seconds)
            details = {"retryAfter": retry_after_seconds}
        super().__init__(message, details=details, headers=merged_headers)


class ForbiddenError(TrustSafetyError):
    """Raised when the actor's trust state or role does not permit the action."""

    status_code = 403
    code = "FORBIDDEN"
    default_message = "Access denied"


class BadRequestError(TrustSafetyError):
    """Raised for malformed flag or review payloads."""

    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad request"


class NotFoundError(TrustSafetyError):
    """Raised when the target does not exist or is not in the expected state."""

    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(TrustSafetyError):
    """Reserved for conflicting writes; flag dedup is silent and never raises this."""

    status_code = 409
    code = "CONFLICT"
    default_message = "Conflict"


__all__ = [
    "BadRequestError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitedError",
    "TrustSafetyError",
]
