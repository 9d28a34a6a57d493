"""User CRUD operations."""
import hashlib
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dreamjournal.app.db.models import User


def hash_session_token(token: str) -> str:
    """SHA-256 hex digest of a provider session token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def lookup_user_by_token_hash(
    session: AsyncSession,
    token_hash: str
) -> Optional[User]:
    """Find a user by the hash of their session token.

    Args:
        session: Database session from FastAPI dependency
        token_hash: The hashed session token to look up

    Returns:
        User object if found, None otherwise
    """
    result = await session.execute(
        select(User).where(User.session_token_hash == token_hash)
    )
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    user_id: str,
    email: str,
    session_token: str,
    name: str | None = None,
    auto_commit: bool = True
) -> User:
    """Register a user together with their provider session token.

    Args:
        session: Database session
        user_id: Stable opaque identifier from the auth provider
        email: User email
        session_token: Raw session token; only its hash is stored
        name: Optional display name
        auto_commit: Whether to commit the transaction
    """
    user = User(
        id=user_id,
        email=email,
        name=name,
        session_token_hash=hash_session_token(session_token),
    )
    session.add(user)
    if auto_commit:
        await session.commit()
    else:
        await session.flush()
    return user
