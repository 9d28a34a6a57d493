"""Session identity from the external auth provider.

The provider hands clients an opaque session token; we only ever see it as
``Authorization: Bearer <token>`` and only store its SHA-256 hash. The rest of
the app depends on nothing but the resulting stable user id.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Request

from dreamjournal.app.db.async_session import SessionDep
from dreamjournal.app.db.crud import lookup_user_by_token_hash
from dreamjournal.app.db.crud.user import hash_session_token
from dreamjournal.app.exceptions import AuthenticationError

MAX_TOKEN_LENGTH = 512


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: str


# LRU cache of token_hash -> (user, cached_at). Plain dataclasses are cached
# instead of ORM objects so nothing is bound to a closed session.
_user_cache: OrderedDict[str, Tuple[AuthenticatedUser, float]] = OrderedDict()
_cache_ttl_seconds = 60
_cache_max_size = 10000
_cache_lock = asyncio.Lock()


async def _get_cached_user(token_hash: str) -> Optional[AuthenticatedUser]:
    async with _cache_lock:
        cached = _user_cache.get(token_hash)
        if cached is None:
            return None
        user, cached_at = cached
        if time.time() - cached_at >= _cache_ttl_seconds:
            del _user_cache[token_hash]
            return None
        _user_cache.move_to_end(token_hash)
        return user


async def _cache_user(token_hash: str, user: AuthenticatedUser) -> None:
    async with _cache_lock:
        _user_cache.pop(token_hash, None)
        if len(_user_cache) >= _cache_max_size:
            # Remove the oldest 20% to reduce eviction frequency
            for _ in range(max(1, int(_cache_max_size * 0.2))):
                if not _user_cache:
                    break
                _user_cache.popitem(last=False)
        _user_cache[token_hash] = (user, time.time())


def clear_user_cache() -> None:
    _user_cache.clear()


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth[len("Bearer "):].strip() or None


async def _resolve_user(request: Request, session: SessionDep) -> Optional[AuthenticatedUser]:
    token = get_bearer_token(request)
    if not token:
        return None

    # Checked before hashing to avoid CPU exhaustion on huge inputs
    if len(token) > MAX_TOKEN_LENGTH:
        raise AuthenticationError("Session token too long")

    token_hash = hash_session_token(token)

    cached = await _get_cached_user(token_hash)
    if cached:
        return cached

    user = await lookup_user_by_token_hash(session, token_hash)
    if user is None:
        raise AuthenticationError("Invalid session token")

    resolved = AuthenticatedUser(id=user.id, email=user.email)
    await _cache_user(token_hash, resolved)
    return resolved


async def require_user(request: Request, session: SessionDep) -> AuthenticatedUser:
    """Resolve the authenticated user or fail with 401."""
    user = await _resolve_user(request, session)
    if user is None:
        raise AuthenticationError("Unauthorized")
    request.state.user_id = user.id
    return user


async def optional_user(request: Request, session: SessionDep) -> Optional[AuthenticatedUser]:
    """Resolve the user if a session token is present.

    Anonymous callers get None; a present but unknown token still fails.
    """
    user = await _resolve_user(request, session)
    if user is not None:
        request.state.user_id = user.id
    return user
