"""Liveness endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from dreamjournal.app.middleware.rate_limit import rate_limit

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", dependencies=[Depends(rate_limit("general"))])
async def health(request: Request) -> dict:
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": request.app.state.settings.app_version,
    }
