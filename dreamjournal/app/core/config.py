import hashlib
import hmac
import json
import re
from dataclasses import dataclass
from typing import Annotated, Any, Literal
from urllib.parse import urlsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from dreamjournal.app.exceptions import ConfigurationError


def _parse_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON (recommended format), but tolerate comma or space separated
    # values so a misconfigured deployment still starts.
    if raw.startswith(("[", '"', "'")):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()
            if not raw or raw == "[]":
                return []

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    origins: list[str] = []
    for part in parts:
        if "://" in part:
            origins.append(part.rstrip("/"))
            continue
        # Browsers always send the scheme in the Origin header, so a bare host
        # allows both HTTP and HTTPS.
        origins.append(f"http://{part}")
        origins.append(f"https://{part}")

    seen: set[str] = set()
    result: list[str] = []
    for origin in origins:
        if origin in seen:
            continue
        seen.add(origin)
        result.append(origin)
    return result


DEFAULT_PORTS = {"http": 80, "https": 443}


def origin_of(url: str) -> str | None:
    """Return the normalized ``scheme://host[:port]`` of a URL, or None if unparsable.

    Scheme and host are lowercased, userinfo is dropped and the scheme's
    default port is omitted, so ``https://App.example.com:443/x`` yields
    ``https://app.example.com``.
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None

    scheme = parts.scheme.lower()
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def derive_header_value(secret: str) -> str:
    """Derive the default custom header value from the CSRF secret.

    The header travels with every client request, so it must not reveal
    any part of the signing key.
    """
    return hmac.new(secret.encode(), b"custom-header", hashlib.sha256).hexdigest()[:32]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False
    app_version: str = "1.0.0"

    # Database (SQLite for local use, PostgreSQL via asyncpg in production)
    database_url: str = "sqlite+aiosqlite:///./dreamjournal.db"
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 300

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Request security
    secret_key: str = ""
    app_url: str = "http://localhost:8000"
    # Use NoDecode so plain host lists don't crash JSON parsing at startup.
    allowed_origins: Annotated[list[str], NoDecode] = []
    origin_check_mode: Literal["strict", "relaxed"] = "strict"
    security_header_name: str = "X-Dream-Journal-Request"
    security_header_value: str = ""
    csrf_max_age_ms: int = 3_600_000
    require_csrf_by_default: bool = True

    # Rate limiting (fixed window, per client fingerprint)
    rate_limit_create_requests: int = 5
    rate_limit_create_window_seconds: float = 60.0
    rate_limit_delete_requests: int = 10
    rate_limit_delete_window_seconds: float = 60.0
    rate_limit_general_requests: int = 30
    rate_limit_general_window_seconds: float = 60.0
    rate_limit_sweep_interval_seconds: float = 300.0

    # Field-level encryption of dream descriptions
    encryption_key: str = ""

    # AI analysis (any OpenAI-compatible chat completions endpoint)
    ai_api_key: str = ""
    ai_base_url: str = "https://api.groq.com/openai/v1"
    ai_model: str = "llama-3.3-70b-versatile"
    ai_timeout: float = 20.0

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 30.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_max_connections: int = 50
    httpx_max_keepalive_connections: int = 10

    max_request_body_bytes: int = 1024 * 1024

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def decode_allowed_origins(cls, v: Any) -> list[str]:
        return _parse_origins(v)

    @field_validator(
        "rate_limit_create_requests",
        "rate_limit_delete_requests",
        "rate_limit_general_requests",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator(
        "rate_limit_create_window_seconds",
        "rate_limit_delete_window_seconds",
        "rate_limit_general_window_seconds",
        "rate_limit_sweep_interval_seconds",
        "ai_timeout",
    )
    @classmethod
    def validate_duration_positive(cls, v: float) -> float:
        """Validate windows, intervals and timeouts are positive."""
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v

    @field_validator("csrf_max_age_ms")
    @classmethod
    def validate_csrf_max_age(cls, v: int) -> int:
        if v < 1000:
            raise ValueError("csrf_max_age_ms should be at least one second")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@dataclass(frozen=True)
class SecurityConfig:
    """Immutable request-security configuration, built once at startup."""

    allowed_origins: frozenset[str]
    custom_header_name: str
    custom_header_secret: str
    csrf_secret: str
    csrf_max_age_ms: int = 3_600_000
    require_csrf_by_default: bool = True
    relaxed_origin_check: bool = False


def build_security_config(app_settings: Settings) -> SecurityConfig:
    """Build the request-security configuration from settings.

    Raises:
        ConfigurationError: If the shared secret is missing. This is fatal at
            startup; nothing downstream re-checks it.
    """
    secret = app_settings.secret_key.strip()
    if not secret:
        raise ConfigurationError(
            "SECRET_KEY is not set. Please configure a secret before starting the server."
        )

    origins = {origin_of(o) or o for o in app_settings.allowed_origins}
    app_origin = origin_of(app_settings.app_url)
    if app_origin:
        origins.add(app_origin)

    return SecurityConfig(
        allowed_origins=frozenset(origins),
        custom_header_name=app_settings.security_header_name,
        custom_header_secret=app_settings.security_header_value or derive_header_value(secret),
        csrf_secret=secret,
        csrf_max_age_ms=app_settings.csrf_max_age_ms,
        require_csrf_by_default=app_settings.require_csrf_by_default,
        relaxed_origin_check=app_settings.origin_check_mode == "relaxed",
    )


# Global settings instance
settings = Settings()
