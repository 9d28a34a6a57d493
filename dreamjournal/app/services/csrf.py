"""Stateless, signed, time-bounded CSRF tokens.

Token layout, before base64 encoding::

    <session id or "anonymous">-<issued at, epoch millis>-<32 hex nonce>.<hex HMAC-SHA256>

Nothing is stored server-side: validity is recomputed on every verification,
so tokens cannot be revoked before they expire. Short expiry plus the origin
and custom header checks compensate for that.
"""

import base64
import binascii
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional

ANONYMOUS_SESSION = "anonymous"
DEFAULT_MAX_AGE_MS = 3_600_000
NONCE_BYTES = 16

REASON_INVALID_FORMAT = "Invalid token format"
REASON_INVALID_SIGNATURE = "Invalid token signature"
REASON_EXPIRED = "Token expired"
REASON_SESSION_MISMATCH = "Token session mismatch"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single security check."""
    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, reason: str) -> "ValidationResult":
        return cls(valid=False, reason=reason)


def _now_ms() -> int:
    return int(time.time() * 1000)


class CSRFTokenService:
    """Issues and verifies CSRF tokens signed with the process secret.

    Pure computation over immutable state, safe under any concurrency.
    """

    def __init__(
        self,
        secret: str,
        default_max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        if not secret:
            raise ValueError("CSRF secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.default_max_age_ms = default_max_age_ms
        self._clock_ms = clock_ms

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, session_id: Optional[str] = None) -> str:
        """Mint a token bound to ``session_id`` (or to any session if None)."""
        payload = "-".join((
            session_id or ANONYMOUS_SESSION,
            str(self._clock_ms()),
            secrets.token_hex(NONCE_BYTES),
        ))
        signed = f"{payload}.{self._sign(payload)}"
        return base64.b64encode(signed.encode("utf-8")).decode("ascii")

    def verify(
        self,
        token: str,
        session_id: Optional[str] = None,
        max_age_ms: Optional[int] = None,
    ) -> ValidationResult:
        """Check a token's signature, age and session binding.

        Malformed input never raises; it degrades to an invalid result with
        a stated reason.
        """
        if max_age_ms is None:
            max_age_ms = self.default_max_age_ms

        try:
            decoded = base64.b64decode(token.encode("ascii"), validate=True).decode("utf-8")
        except (binascii.Error, ValueError, UnicodeError, AttributeError):
            return ValidationResult.fail(REASON_INVALID_FORMAT)

        payload, sep, signature = decoded.rpartition(".")
        if not sep or not payload or not signature:
            return ValidationResult.fail(REASON_INVALID_FORMAT)

        expected = self._sign(payload).encode("ascii")
        if not hmac.compare_digest(signature.encode("utf-8"), expected):
            return ValidationResult.fail(REASON_INVALID_SIGNATURE)

        # The session id itself may contain "-", so split from the right
        parts = payload.rsplit("-", 2)
        if len(parts) != 3:
            return ValidationResult.fail(REASON_INVALID_FORMAT)
        token_session, issued_at_raw, _nonce = parts

        try:
            issued_at = int(issued_at_raw)
        except ValueError:
            return ValidationResult.fail(REASON_INVALID_FORMAT)

        if self._clock_ms() - issued_at > max_age_ms:
            return ValidationResult.fail(REASON_EXPIRED)

        if (
            session_id
            and token_session != ANONYMOUS_SESSION
            and token_session != session_id
        ):
            return ValidationResult.fail(REASON_SESSION_MISMATCH)

        return ValidationResult.ok()
