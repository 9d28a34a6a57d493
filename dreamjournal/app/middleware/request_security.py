"""Request security checks: origin allow-list, custom header, CSRF token.

``RequestSecurity.validate`` is the single entry point route handlers use.
Every enabled check runs, and every failure reason is collected in order, so
callers and logs see the whole picture rather than the first failure.
"""

from dataclasses import dataclass, field
from typing import List, Mapping, Optional
from urllib.parse import urlsplit

from fastapi import Request, Response
from starlette.datastructures import Headers

from dreamjournal.app.core.config import SecurityConfig, origin_of
from dreamjournal.app.core.logging import get_log_context, get_logger
from dreamjournal.app.exceptions import SecurityValidationError
from dreamjournal.app.services.csrf import CSRFTokenService, ValidationResult

logger = get_logger(__name__)

CSRF_HEADER = "X-CSRF-Token"

REASON_MISSING_ORIGIN = "Missing origin information"
REASON_INVALID_HEADER = "Invalid security header value"
REASON_MISSING_CSRF = "Missing CSRF token"


def _hostname(origin: str) -> Optional[str]:
    try:
        return urlsplit(origin).hostname
    except ValueError:
        return None


class OriginValidator:
    """Checks the request origin and the shared custom header."""

    def __init__(self, config: SecurityConfig):
        self.config = config

    def validate_origin(
        self,
        origin_header: Optional[str],
        referer_header: Optional[str],
    ) -> ValidationResult:
        """Validate the Origin header, falling back to the Referer's origin.

        Strict mode compares full origins exactly; relaxed mode (development
        only, enabled explicitly) compares hostnames and ignores scheme/port.
        """
        request_origin = origin_header or (
            origin_of(referer_header) if referer_header else None
        )
        if not request_origin:
            return ValidationResult.fail(REASON_MISSING_ORIGIN)

        if self.config.relaxed_origin_check:
            request_host = _hostname(request_origin)
            allowed = request_host is not None and any(
                _hostname(candidate) == request_host
                for candidate in self.config.allowed_origins
            )
        else:
            allowed = request_origin in self.config.allowed_origins

        if not allowed:
            return ValidationResult.fail(f"Origin {request_origin} not allowed")
        return ValidationResult.ok()

    def validate_custom_header(self, header_value: Optional[str]) -> ValidationResult:
        if not header_value:
            return ValidationResult.fail(
                f"Missing required header: {self.config.custom_header_name}"
            )
        if header_value != self.config.custom_header_secret:
            return ValidationResult.fail(REASON_INVALID_HEADER)
        return ValidationResult.ok()


@dataclass
class ValidationOptions:
    """Which checks to run. ``check_csrf=None`` means the configured default."""
    check_origin: bool = True
    check_custom_header: bool = True
    check_csrf: Optional[bool] = None
    csrf_token: Optional[str] = None
    session_id: Optional[str] = None


@dataclass
class SecurityReport:
    errors: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class RequestSecurity:
    """Composes origin, custom header and CSRF validation.

    Usage:
        report = security.validate(request.headers, ValidationOptions(
            csrf_token=body.csrf_token, session_id=user.id,
        ))
        if not report.valid:
            raise SecurityValidationError(report.errors)
    """

    def __init__(self, config: SecurityConfig, csrf: Optional[CSRFTokenService] = None):
        self.config = config
        self.origins = OriginValidator(config)
        self.csrf = csrf or CSRFTokenService(
            config.csrf_secret, default_max_age_ms=config.csrf_max_age_ms
        )

    def validate(
        self,
        headers: Mapping[str, str],
        options: Optional[ValidationOptions] = None,
    ) -> SecurityReport:
        """Run every enabled check without short-circuiting.

        A requested CSRF check with no token fails closed with
        "Missing CSRF token".
        """
        options = options or ValidationOptions()
        if not isinstance(headers, Headers):
            headers = Headers(headers=dict(headers))

        check_csrf = (
            self.config.require_csrf_by_default
            if options.check_csrf is None
            else options.check_csrf
        )
        report = SecurityReport()

        if options.check_origin:
            result = self.origins.validate_origin(
                headers.get("Origin"), headers.get("Referer")
            )
            if not result.valid:
                report.errors.append(result.reason)

        if options.check_custom_header:
            result = self.origins.validate_custom_header(
                headers.get(self.config.custom_header_name)
            )
            if not result.valid:
                report.errors.append(result.reason)

        if check_csrf:
            if not options.csrf_token:
                report.errors.append(REASON_MISSING_CSRF)
            else:
                result = self.csrf.verify(
                    options.csrf_token,
                    session_id=options.session_id,
                    max_age_ms=self.config.csrf_max_age_ms,
                )
                if not result.valid:
                    report.errors.append(result.reason)

        return report

    def enforce(
        self,
        request: Request,
        response: Response,
        options: Optional[ValidationOptions] = None,
    ) -> SecurityReport:
        """Validate a live request, raising SecurityValidationError on failure.

        Marks successful responses with ``X-Security-Validated: true``.
        """
        report = self.validate(request.headers, options)
        if not report.valid:
            logger.warning(
                "Security validation failed",
                extra=get_log_context(
                    request_id=getattr(request.state, "request_id", None),
                    user_id=options.session_id if options else None,
                    path=request.url.path,
                    errors=report.errors,
                ),
            )
            raise SecurityValidationError(report.errors)

        response.headers["X-Security-Validated"] = "true"
        return report


def get_request_security(request: Request) -> RequestSecurity:
    """FastAPI dependency returning the app's RequestSecurity instance."""
    return request.app.state.request_security
