"""CSRF token issuance endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from dreamjournal.app.core.logging import get_log_context, get_logger
from dreamjournal.app.middleware.auth import AuthenticatedUser, optional_user
from dreamjournal.app.middleware.rate_limit import rate_limit
from dreamjournal.app.middleware.request_security import (
    RequestSecurity,
    ValidationOptions,
    get_request_security,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["security"])


@router.get("/csrf", dependencies=[Depends(rate_limit("general"))])
async def issue_csrf_token(
    request: Request,
    response: Response,
    security: RequestSecurity = Depends(get_request_security),
    user: Optional[AuthenticatedUser] = Depends(optional_user),
) -> dict:
    """Mint a CSRF token bound to the caller's session.

    Anonymous callers get a token valid for any session. The CSRF check
    itself is skipped here since this is where tokens come from.
    """
    session_id = user.id if user else None
    security.enforce(
        request,
        response,
        ValidationOptions(check_csrf=False, session_id=session_id),
    )

    token = security.csrf.issue(session_id)
    logger.debug(
        "Issued CSRF token",
        extra=get_log_context(
            request_id=getattr(request.state, "request_id", None),
            user_id=session_id,
        ),
    )
    return {"csrfToken": token, "expiresIn": security.config.csrf_max_age_ms}
