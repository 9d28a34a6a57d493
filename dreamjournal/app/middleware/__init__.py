from dreamjournal.app.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimiters,
    RateLimitResult,
    get_client_key,
    rate_limit,
)
from dreamjournal.app.middleware.request_id import RequestIdMiddleware, get_request_id
from dreamjournal.app.middleware.request_security import (
    OriginValidator,
    RequestSecurity,
    SecurityReport,
    ValidationOptions,
    get_request_security,
)
from dreamjournal.app.middleware.request_size import RequestSizeLimitMiddleware
from dreamjournal.app.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "InMemoryRateLimiter",
    "OriginValidator",
    "RateLimitResult",
    "RateLimiters",
    "RequestIdMiddleware",
    "RequestSecurity",
    "RequestSizeLimitMiddleware",
    "SecurityHeadersMiddleware",
    "SecurityReport",
    "ValidationOptions",
    "get_client_key",
    "get_request_id",
    "get_request_security",
    "rate_limit",
]
