"""CRUD operations package.

- user.py: User lookups for the auth collaborator
- dream.py: Owner-scoped dream operations
"""

from dreamjournal.app.db.crud.user import (
    create_user,
    get_user_by_id,
    lookup_user_by_token_hash,
)
from dreamjournal.app.db.crud.dream import (
    create_dream,
    delete_dream_for_user,
    list_dreams_for_user,
)

__all__ = [
    "create_user",
    "get_user_by_id",
    "lookup_user_by_token_hash",
    "create_dream",
    "delete_dream_for_user",
    "list_dreams_for_user",
]
