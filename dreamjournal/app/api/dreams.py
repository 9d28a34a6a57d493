"""Dream journal endpoints: list, add and delete.

Mutating routes run, in order: their rate limiter, session auth, the full
request security check (origin, custom header, CSRF bound to the user), and
only then business logic.
"""

from typing import Any, Dict, List, Optional

from cryptography.fernet import Fernet
from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from dreamjournal.app.core.logging import get_log_context, get_logger
from dreamjournal.app.core.security import get_cipher, encrypt_text, is_encrypted, safe_decrypt
from dreamjournal.app.db.async_session import SessionDep
from dreamjournal.app.db.crud import create_dream, delete_dream_for_user, list_dreams_for_user
from dreamjournal.app.db.models import Dream
from dreamjournal.app.exceptions import DreamNotFoundError, InvalidDreamError
from dreamjournal.app.middleware.auth import AuthenticatedUser, require_user
from dreamjournal.app.middleware.rate_limit import rate_limit
from dreamjournal.app.middleware.request_security import (
    CSRF_HEADER,
    RequestSecurity,
    ValidationOptions,
    get_request_security,
)
from dreamjournal.app.services.dream_analysis import DreamAnalyzer, get_dream_analyzer
from dreamjournal.app.services.patterns import calculate_patterns, most_frequent

logger = get_logger(__name__)

router = APIRouter(prefix="/api/dreams", tags=["dreams"])

MAX_DESCRIPTION_LENGTH = 10_000


class AddDreamRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str = ""
    csrf_token: Optional[str] = Field(default=None, alias="csrfToken")


class DeleteDreamRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dream_id: int = Field(alias="dreamId")
    csrf_token: Optional[str] = Field(default=None, alias="csrfToken")


def get_dream_cipher(request: Request) -> Fernet:
    return get_cipher(request.app.state.settings.encryption_key)


def _csrf_token(request: Request, body_token: Optional[str]) -> Optional[str]:
    """The body token wins over the X-CSRF-Token header."""
    return body_token or request.headers.get(CSRF_HEADER)


def serialize_dream(dream: Dream, cipher: Fernet) -> Dict[str, Any]:
    description = dream.description
    if is_encrypted(description):
        description = safe_decrypt(description, cipher)
    return {
        "id": dream.id,
        "userId": dream.user_id,
        "description": description,
        "themes": dream.themes or [],
        "emotions": dream.emotions or [],
        "intensity": dream.intensity,
        "symbolism": dream.symbolism or [],
        "visual": dream.visual or {},
        "createdAt": dream.created_at.isoformat() if dream.created_at else None,
    }


async def _gallery(session, user_id: str, cipher: Fernet) -> Dict[str, Any]:
    dreams: List[Dict[str, Any]] = [
        serialize_dream(dream, cipher)
        for dream in await list_dreams_for_user(session, user_id)
    ]
    patterns = calculate_patterns(dreams)
    top = {
        kind: [{"name": name, "count": count} for name, count in ranked]
        for kind, ranked in most_frequent(patterns).items()
    }
    return {"dreams": dreams, "patterns": patterns, "topPatterns": top}


@router.get("", dependencies=[Depends(rate_limit("general"))])
async def list_dreams(
    session: SessionDep,
    user: AuthenticatedUser = Depends(require_user),
    cipher: Fernet = Depends(get_dream_cipher),
) -> dict:
    """The caller's dreams, newest first, with theme/emotion counts."""
    return await _gallery(session, user.id, cipher)


@router.post("/add", dependencies=[Depends(rate_limit("create"))])
async def add_dream(
    body: AddDreamRequest,
    request: Request,
    response: Response,
    session: SessionDep,
    user: AuthenticatedUser = Depends(require_user),
    security: RequestSecurity = Depends(get_request_security),
    analyzer: DreamAnalyzer = Depends(get_dream_analyzer),
    cipher: Fernet = Depends(get_dream_cipher),
) -> dict:
    security.enforce(
        request,
        response,
        ValidationOptions(
            check_csrf=True,
            csrf_token=_csrf_token(request, body.csrf_token),
            session_id=user.id,
        ),
    )

    description = body.description.strip()
    if not description:
        raise InvalidDreamError("Description is required")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidDreamError(
            f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )

    # Analysis sees the plain text; only the ciphertext is stored
    analysis = await analyzer.analyze(description)
    dream = await create_dream(
        session,
        user_id=user.id,
        description=encrypt_text(description, cipher),
        themes=analysis["themes"],
        emotions=analysis["emotions"],
        intensity=analysis["intensity"],
        symbolism=analysis["symbolism"],
        visual=analysis["visual"],
    )
    logger.info(
        f"Dream {dream.id} added",
        extra=get_log_context(
            request_id=getattr(request.state, "request_id", None),
            user_id=user.id,
        ),
    )
    return await _gallery(session, user.id, cipher)


@router.post("/delete", dependencies=[Depends(rate_limit("delete"))])
async def delete_dream(
    body: DeleteDreamRequest,
    request: Request,
    response: Response,
    session: SessionDep,
    user: AuthenticatedUser = Depends(require_user),
    security: RequestSecurity = Depends(get_request_security),
    cipher: Fernet = Depends(get_dream_cipher),
) -> dict:
    security.enforce(
        request,
        response,
        ValidationOptions(
            check_csrf=True,
            csrf_token=_csrf_token(request, body.csrf_token),
            session_id=user.id,
        ),
    )

    if not await delete_dream_for_user(session, user.id, body.dream_id):
        raise DreamNotFoundError(body.dream_id)

    logger.info(
        f"Dream {body.dream_id} deleted",
        extra=get_log_context(
            request_id=getattr(request.state, "request_id", None),
            user_id=user.id,
        ),
    )
    return await _gallery(session, user.id, cipher)
