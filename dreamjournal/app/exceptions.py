"""Custom exceptions for the dream journal application."""

from datetime import datetime, timezone


class DreamJournalException(Exception):
    """Base class for application exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Dream journal error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(DreamJournalException):
    """Raised at startup when required configuration is missing.

    Never raised per request: once the app is running the configuration
    is assumed to be present and valid.
    """


class RateLimitExceededError(DreamJournalException):
    """Raised when a client exhausted its quota for the current window.

    Maps to HTTP 429 Too Many Requests. Recoverable by the caller after
    ``retry_after`` seconds; never retried server-side.
    """
    status_code = 429

    def __init__(
        self,
        retry_after: int,
        reset_at: float,
        detail: str = "Too many requests. Please try again later.",
    ):
        self.retry_after = retry_after
        self.reset_at = reset_at
        super().__init__(detail)

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()

    def to_response(self) -> dict:
        return {
            "error": "Rate limit exceeded",
            "message": self.message,
            "retryAfter": self.retry_after,
        }


class SecurityValidationError(DreamJournalException):
    """Raised when a request fails origin, custom header or CSRF checks.

    Maps to HTTP 403 Forbidden. ``errors`` holds every failed check in the
    order the checks ran.
    """
    status_code = 403

    def __init__(
        self,
        errors: list[str],
        detail: str = "Request does not meet security requirements",
    ):
        self.errors = list(errors)
        super().__init__(detail)

    def to_response(self) -> dict:
        return {
            "error": "Security validation failed",
            "details": self.errors,
            "message": self.message,
        }


class AuthenticationError(DreamJournalException):
    """Raised when the session token is missing or unknown.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401

    def __init__(self, detail: str = "Invalid or missing session token"):
        self.detail = detail
        super().__init__(detail)


class DreamNotFoundError(DreamJournalException):
    """Raised when a dream does not exist or belongs to another user.

    Maps to HTTP 404 Not Found.
    """
    status_code = 404

    def __init__(self, dream_id: int):
        self.dream_id = dream_id
        super().__init__(f"Dream {dream_id} not found")


class InvalidDreamError(DreamJournalException):
    """Raised when a dream submission is empty or too long.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
