from __future__ import annotations
import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.config import settings
from hubba.errors import FailedPrecondition
from hubba.models.user import User
from hubba.services.users import ensure_user

log = structlog.get_logger()


def ensure_can_vote(user: User) -> None:
    if user.is_banned:
        raise FailedPrecondition("Banned accounts cannot vote.")
    if user.reputation < settings.reputation_min_to_vote:
        raise FailedPrecondition(
            "Reputation too low to vote.",
            reputation=user.reputation,
            required=settings.reputation_min_to_vote,
        )


async def adjust(session: AsyncSession, user_id: str, delta: int, *, reason: str) -> int:
    """Apply a reputation delta, never going below zero. Returns the new score."""
    user = await ensure_user(session, user_id, lock=True)
    user.reputation = max(0, int(user.reputation) + int(delta))
    log.info("reputation_adjusted", user_id=user_id, delta=delta, reason=reason, reputation=user.reputation)
    return user.reputation
