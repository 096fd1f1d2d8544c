"""
Durable fixed-window rate limiting.

Counters live in the `rate_limits` table, one row per (actor, action class),
and are read-modify-written inside the caller's transaction with the row
locked, so concurrent requests from the same actor serialize on it.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.config import settings
from hubba.db import utcnow
from hubba.errors import InvalidArgument, ResourceExhausted
from hubba.models.rate_limit import RateLimitCounter

log = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int
    window: timedelta


RATE_LIMITS: dict[str, RateLimitPolicy] = {
    "challenge_create": RateLimitPolicy(10, timedelta(hours=1)),
    "bounty_create": RateLimitPolicy(3, timedelta(days=30)),
    "claim_submit": RateLimitPolicy(10, timedelta(days=1)),
    "vote": RateLimitPolicy(50, timedelta(days=1)),
    "role_manage": RateLimitPolicy(10, timedelta(minutes=1)),
}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: datetime
    current_count: int
    limit: int

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "resetAt": self.reset_at.isoformat(),
            "currentCount": self.current_count,
            "limit": self.limit,
        }


def _policy(action: str) -> RateLimitPolicy:
    policy = RATE_LIMITS.get(action)
    if policy is None:
        raise InvalidArgument(f"Unknown rate-limited action: {action}")
    return policy


async def check_and_update(session: AsyncSession, actor_id: str, action: str, *, now: datetime | None = None) -> RateLimitDecision:
    policy = _policy(action)
    now = now or utcnow()
    row = await session.get(RateLimitCounter, (actor_id, action), with_for_update=True)

    if row is None:
        session.add(RateLimitCounter(actor_id=actor_id, action=action, count=1, window_start=now, updated_at=now))
        await session.flush()
        return RateLimitDecision(True, policy.max_requests - 1, now + policy.window, 1, policy.max_requests)

    reset_at = row.window_start + policy.window
    if now >= reset_at:
        row.count = 1
        row.window_start = now
        row.updated_at = now
        return RateLimitDecision(True, policy.max_requests - 1, now + policy.window, 1, policy.max_requests)

    if row.count >= policy.max_requests:
        return RateLimitDecision(False, 0, reset_at, row.count, policy.max_requests)

    row.count += 1
    row.updated_at = now
    return RateLimitDecision(True, policy.max_requests - row.count, reset_at, row.count, policy.max_requests)


async def enforce(session: AsyncSession, actor_id: str, action: str, *, now: datetime | None = None) -> RateLimitDecision:
    decision = await check_and_update(session, actor_id, action, now=now)
    if not decision.allowed:
        log.info("rate_limited", actor_id=actor_id, action=action, reset_at=decision.reset_at.isoformat())
        raise ResourceExhausted(
            f"Rate limit exceeded for {action}. Try again after {decision.reset_at.isoformat()}.",
            resetAt=decision.reset_at.isoformat(),
            limit=decision.limit,
        )
    return decision


async def get_status(session: AsyncSession, actor_id: str, action: str, *, now: datetime | None = None) -> RateLimitDecision:
    """Read-only view of the counter; never consumes quota."""
    policy = _policy(action)
    now = now or utcnow()
    row = await session.get(RateLimitCounter, (actor_id, action))
    if row is None or now >= row.window_start + policy.window:
        return RateLimitDecision(True, policy.max_requests, now + policy.window, 0, policy.max_requests)
    return RateLimitDecision(
        row.count < policy.max_requests,
        max(0, policy.max_requests - row.count),
        row.window_start + policy.window,
        row.count,
        policy.max_requests,
    )


async def cleanup(session: AsyncSession, *, now: datetime | None = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=settings.rate_limit_retention_days)
    result = await session.execute(delete(RateLimitCounter).where(RateLimitCounter.updated_at < cutoff))
    return int(result.rowcount or 0)
