"""
Register a journal user with a provider session token (local development).

Usage:
    python scripts/register_session.py USER_ID EMAIL [--token TOKEN] [--name NAME]
"""
import argparse
import asyncio
import secrets
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dreamjournal.app.db.async_session import close_async_engine, get_async_session, init_async_db
from dreamjournal.app.db.crud import create_user, get_user_by_id


async def register(user_id: str, email: str, token: str, name: str | None) -> bool:
    await init_async_db()
    try:
        async with get_async_session() as session:
            if await get_user_by_id(session, user_id):
                print(f"User {user_id} already exists")
                return False
            await create_user(session, user_id=user_id, email=email, session_token=token, name=name)
    finally:
        await close_async_engine()
    return True


def main() -> int:
    parser = argparse.ArgumentParser(description="Register a dream journal user")
    parser.add_argument("user_id")
    parser.add_argument("email")
    parser.add_argument("--token", help="Session token (generated if omitted)")
    parser.add_argument("--name")
    args = parser.parse_args()

    token = args.token or secrets.token_urlsafe(32)
    if not asyncio.run(register(args.user_id, args.email, token, args.name)):
        return 1

    print(f"Registered {args.user_id}")
    print(f"Authorization: Bearer {token}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
