"""Dream CRUD operations.

Every query is scoped to the owning user.
"""
from typing import Any, List

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from dreamjournal.app.db.models import Dream


async def create_dream(
    session: AsyncSession,
    user_id: str,
    description: str,
    themes: list[str],
    emotions: list[str],
    intensity: int,
    symbolism: list[str],
    visual: dict[str, Any],
    auto_commit: bool = True
) -> Dream:
    """Create a new dream entry.

    Args:
        session: Database session from FastAPI dependency
        user_id: Owner of the dream
        description: Already-encrypted description
        themes, emotions, intensity, symbolism, visual: Analysis output
        auto_commit: Whether to commit the transaction

    Returns:
        The created Dream
    """
    dream = Dream(
        user_id=user_id,
        description=description,
        themes=list(themes),
        emotions=list(emotions),
        intensity=intensity,
        symbolism=list(symbolism),
        visual=visual,
    )
    session.add(dream)
    if auto_commit:
        await session.commit()
    else:
        await session.flush()
    return dream


async def list_dreams_for_user(session: AsyncSession, user_id: str) -> List[Dream]:
    """Get a user's dreams, newest first."""
    result = await session.execute(
        select(Dream)
        .where(Dream.user_id == user_id)
        .order_by(Dream.created_at.desc(), Dream.id.desc())
    )
    return list(result.scalars().all())


async def delete_dream_for_user(
    session: AsyncSession,
    user_id: str,
    dream_id: int,
    auto_commit: bool = True
) -> bool:
    """Delete a dream only if it belongs to the user.

    Returns:
        True if a row was deleted, False if no such dream for this user
    """
    result = await session.execute(
        delete(Dream).where(Dream.id == dream_id, Dream.user_id == user_id)
    )
    if auto_commit:
        await session.commit()
    return (result.rowcount or 0) > 0
