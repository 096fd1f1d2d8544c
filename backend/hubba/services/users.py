from __future__ import annotations
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.errors import NotFound
from hubba.models.user import User


async def ensure_user(session: AsyncSession, user_id: str, *, lock: bool = False) -> User:
    """
    Fetch the actor's record, creating it with baseline values on first use.
    Identity lives with the external provider; this row only carries
    server-owned state (wallet, reputation, roles).
    """
    user = await session.get(User, user_id, with_for_update=lock)
    if user is None:
        user = User(id=user_id, roles=[])
        session.add(user)
        await session.flush()
    return user


async def get_user(session: AsyncSession, user_id: str, *, lock: bool = False) -> User:
    user = await session.get(User, user_id, with_for_update=lock)
    if user is None:
        raise NotFound("User not found", userId=user_id)
    return user


async def get_roles(session: AsyncSession, user_id: str) -> set[str]:
    user = await session.get(User, user_id)
    return set(user.roles or []) if user else set()
