from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dreamjournal.app.api import csrf_router, dreams_router, health_router
from dreamjournal.app.core.config import Settings, build_security_config, settings
from dreamjournal.app.core.http_client import init_http_client
from dreamjournal.app.core.logging import get_logger, setup_logging
from dreamjournal.app.db.async_session import close_async_engine, init_async_db
from dreamjournal.app.exceptions import (
    AuthenticationError,
    DreamJournalException,
    RateLimitExceededError,
    SecurityValidationError,
)
from dreamjournal.app.middleware.rate_limit import RateLimiters, apply_rate_limit_headers
from dreamjournal.app.middleware.request_id import RequestIdMiddleware
from dreamjournal.app.middleware.request_security import RequestSecurity
from dreamjournal.app.middleware.request_size import RequestSizeLimitMiddleware
from dreamjournal.app.middleware.security_headers import SecurityHeadersMiddleware


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Settings to wire the app with; the process-wide
            settings are used if not provided.

    Raises:
        ConfigurationError: If SECRET_KEY is missing
    """
    app_settings = app_settings or settings

    setup_logging()
    logger = get_logger(__name__)

    # Fails fast on a missing secret, before any request is served
    security_config = build_security_config(app_settings)
    rate_limiters = RateLimiters.from_settings(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Open the shared HTTP client, create tables, run limiter sweeps."""
        async with init_http_client() as http_client:
            await init_async_db()
            await rate_limiters.start()

            logger.info(
                "Application startup complete",
                extra={
                    "allowed_origins": sorted(security_config.allowed_origins),
                    "origin_check_mode": app_settings.origin_check_mode,
                    "ai_analysis": bool(app_settings.ai_api_key),
                },
            )

            yield {"http_client": http_client}

            await rate_limiters.stop()

        await close_async_engine()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Dream Journal",
        description="Dream journal API with AI analysis and request security",
        version=app_settings.app_version,
        lifespan=lifespan,
    )

    app.state.settings = app_settings
    app.state.security_config = security_config
    app.state.request_security = RequestSecurity(security_config)
    app.state.rate_limiters = rate_limiters

    # Middleware order matters: last added = first executed
    if app_settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=sorted(security_config.allowed_origins),
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=[
                "X-Request-ID",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
                "X-Security-Error",
            ],
            max_age=600,
        )

    app.add_middleware(
        RequestSizeLimitMiddleware, max_body_size=app_settings.max_request_body_bytes
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(csrf_router)
    app.include_router(dreams_router)
    app.include_router(health_router)

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        """Handle RateLimitExceededError and return HTTP 429 response."""
        return JSONResponse(
            status_code=429,
            content=exc.to_response(),
            headers={
                "Retry-After": str(exc.retry_after),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": exc.reset_at_iso,
            },
        )

    def _with_rate_limit_headers(request: Request, response: JSONResponse) -> JSONResponse:
        # Headers set on the injected Response are lost when a handler builds its own
        result = getattr(request.state, "rate_limit", None)
        if result is not None:
            apply_rate_limit_headers(response, result)
        return response

    @app.exception_handler(SecurityValidationError)
    async def security_error_handler(request: Request, exc: SecurityValidationError) -> JSONResponse:
        """Handle SecurityValidationError and return HTTP 403 response."""
        return _with_rate_limit_headers(request, JSONResponse(
            status_code=403,
            content=exc.to_response(),
            headers={"X-Security-Error": "true"},
        ))

    @app.exception_handler(AuthenticationError)
    async def auth_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
        """Handle AuthenticationError and return HTTP 401 response."""
        return JSONResponse(
            status_code=401,
            content={"error": "Unauthorized", "message": exc.detail},
        )

    @app.exception_handler(DreamJournalException)
    async def app_error_handler(request: Request, exc: DreamJournalException) -> JSONResponse:
        """Remaining application errors map to their declared status code."""
        return _with_rate_limit_headers(request, JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
        ))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global handler for unhandled exceptions.

        The traceback is logged server-side and never returned to the client.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        content = {
            "error": "Internal server error",
            "message": "An unexpected error occurred",
            "request_id": request_id,
        }
        if app_settings.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
