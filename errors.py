"""
Error taxonomy for the JSON API.

Every exception carries the HTTP status it maps to and a short message
that is safe to show to the caller. The app-level error handler turns
them into ``{"error": message}`` envelopes.
"""
from typing import Optional


class APIError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(APIError):
    status_code = 400
    message = "Invalid request"


class AuthError(APIError):
    status_code = 401
    message = "Unauthorized"


class ForbiddenError(APIError):
    status_code = 403
    message = "Forbidden"


class NotFoundError(APIError):
    status_code = 404
    message = "Not found"


class ConflictError(APIError):
    status_code = 409
    message = "Already exists"


class RateLimitError(APIError):
    status_code = 429
    message = "Too many requests. Try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = max(int(retry_after), 1)

    def to_dict(self) -> dict:
        return {"error": self.message, "retryAfter": self.retry_after}


class DependencyError(APIError):
    """An external provider (SMS, payments, storage, email) failed."""

    status_code = 500
    message = "Service temporarily unavailable"
