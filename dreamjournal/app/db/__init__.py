"""Database package for the dream journal.

This package provides:
- Database models (User, Dream)
- Asynchronous session management
- CRUD operations for all models
- FastAPI dependency injection support
"""

from dreamjournal.app.db.base import Base
from dreamjournal.app.db.models import Dream, User
from dreamjournal.app.db.async_session import (
    SessionDep,
    close_async_engine,
    get_async_engine,
    get_async_session,
    get_async_session_maker,
    get_db,
    init_async_db,
)
from dreamjournal.app.db.crud import (
    create_dream,
    create_user,
    delete_dream_for_user,
    get_user_by_id,
    list_dreams_for_user,
    lookup_user_by_token_hash,
)

__all__ = [
    "Base",
    "Dream",
    "User",
    "SessionDep",
    "close_async_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_maker",
    "get_db",
    "init_async_db",
    "create_dream",
    "create_user",
    "delete_dream_for_user",
    "get_user_by_id",
    "list_dreams_for_user",
    "lookup_user_by_token_hash",
]
