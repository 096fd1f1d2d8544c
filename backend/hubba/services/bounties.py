"""
Bounty marketplace settlement.

    OPEN -> LOCKED -> PAID
    OPEN -> EXPIRED | CANCELLED

Rewards are escrowed with a HOLD entry at creation. Every exit from OPEN
writes entries that bring the bounty's ledger sum back to zero.
"""
from __future__ import annotations
import math
import re
import uuid
from datetime import datetime, timezone as dt_tz
from uuid import UUID
import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from hubba.config import settings
from hubba.db import record_change, run_in_transaction, snapshot, utcnow
from hubba.errors import DeadlineExceeded, FailedPrecondition, InvalidArgument, NotFound, PermissionDenied
from hubba.models.bounty import Bounty, Claim, ClaimVote
from hubba.models.user import User
from hubba.services import rate_limit, reputation
from hubba.services.ledger import PLATFORM_ACCOUNT, compute_expiry_refund, compute_payout, escrow_account, write_ledger_tx
from hubba.services.users import ensure_user, get_roles
from hubba.services.wallet import credit_tokens, debit_tokens

log = structlog.get_logger()

CLAIM_PATH = re.compile(r"^claims/([^/]+)/([^/]+)\.mp4$")
RATE_LIMIT_EXEMPT_ROLES = {"admin", "verified_pro"}
ACTIVE_CLAIM_STATUSES = ("PENDING", "APPROVED")


async def _bounty(session: AsyncSession, bounty_id: UUID, *, lock: bool = True) -> Bounty:
    b = await session.get(Bounty, bounty_id, with_for_update=lock, populate_existing=lock)
    if b is None:
        raise NotFound("Bounty not found", bountyId=str(bounty_id))
    return b


async def _claim(session: AsyncSession, bounty: Bounty, claim_id: str) -> Claim:
    c = await session.get(Claim, claim_id, with_for_update=True, populate_existing=True)
    if c is None or c.bounty_id != bounty.id:
        raise NotFound("Claim not found", claimId=claim_id)
    return c


def _changed(session: AsyncSession, collection: str, obj, before: dict | None) -> None:
    record_change(session, collection, obj.id, before, snapshot(obj))


async def create_bounty(
    session: AsyncSession,
    actor_id: str,
    *,
    spot_id: str,
    trick_desc: str,
    reward_total: int,
    expires_at: datetime,
    rules: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    if not spot_id or not (trick_desc or "").strip():
        raise InvalidArgument("spotId and trickDesc are required")
    if isinstance(reward_total, bool) or not isinstance(reward_total, int) or reward_total < settings.bounty_min_reward:
        raise InvalidArgument(f"Reward must be an integer of at least {settings.bounty_min_reward}")
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=dt_tz.utc)
    if expires_at <= now:
        raise InvalidArgument("expiresAt must be in the future")

    creator = await ensure_user(session, actor_id)
    if creator.is_banned:
        raise PermissionDenied("Banned accounts cannot post bounties")
    if not RATE_LIMIT_EXEMPT_ROLES & set(creator.roles or []):
        await rate_limit.enforce(session, actor_id, "bounty_create", now=now)

    await debit_tokens(session, user_id=actor_id, tokens=reward_total)
    b = Bounty(
        id=uuid.uuid4(),
        spot_id=spot_id,
        creator_id=actor_id,
        trick_desc=trick_desc.strip(),
        rules=rules,
        reward_total=reward_total,
        currency=settings.bounty_currency,
        platform_fee_bps=settings.platform_fee_bps,
        filmer_cut_bps=settings.filmer_cut_bps,
        max_clip_seconds=settings.bounty_max_clip_seconds,
        status="OPEN",
        expires_at=expires_at,
        min_votes=settings.bounty_min_votes,
        approve_ratio=settings.bounty_approve_ratio,
        claim_count=0,
        vote_count=0,
    )
    session.add(b)
    await session.flush()
    await write_ledger_tx(
        session,
        tx_id=f"hold:{b.id}",
        type="HOLD",
        amount=-reward_total,
        currency=b.currency,
        from_id=actor_id,
        to_id=escrow_account(b.id),
        bounty_id=b.id,
        memo="bounty_reward_hold",
    )
    _changed(session, "bounties", b, None)
    log.info("bounty_created", bounty_id=str(b.id), creator_id=actor_id, reward_total=reward_total)
    return {"bountyId": str(b.id)}


async def submit_claim(
    session: AsyncSession,
    actor_id: str,
    bounty_id: UUID,
    *,
    clip_path: str,
    duration: float,
    filmer_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    m = CLAIM_PATH.match(clip_path or "")
    if not m or m.group(1) != str(bounty_id):
        raise InvalidArgument("clipStoragePath must be claims/{bountyId}/{claimId}.mp4")
    claim_id = m.group(2)

    b = await _bounty(session, bounty_id)
    if b.status != "OPEN":
        raise FailedPrecondition("Bounty is not open", status=b.status)
    if now >= b.expires_at:
        raise DeadlineExceeded("Bounty has expired")
    if b.creator_id == actor_id:
        raise FailedPrecondition("You cannot claim your own bounty")
    if duration is None or not math.isfinite(duration):
        raise InvalidArgument("Clip duration must be a finite number of seconds")
    if duration <= 0 or duration > b.max_clip_seconds:
        raise InvalidArgument(f"Clip must be at most {b.max_clip_seconds}s", duration=duration)
    if filmer_id is not None:
        if filmer_id == actor_id:
            raise InvalidArgument("You cannot tag yourself as filmer")
        if await session.get(User, filmer_id) is None:
            raise NotFound("Filmer not found", filmerId=filmer_id)

    claimer = await ensure_user(session, actor_id)
    if claimer.is_banned:
        raise PermissionDenied("Banned accounts cannot submit claims")
    existing = await session.scalar(select(Claim.id).where(Claim.bounty_id == b.id, Claim.claimer_id == actor_id))
    if existing or await session.get(Claim, claim_id) is not None:
        raise FailedPrecondition("Claim already exists")
    await rate_limit.enforce(session, actor_id, "claim_submit", now=now)

    before = snapshot(b)
    c = Claim(
        id=claim_id,
        bounty_id=b.id,
        claimer_id=actor_id,
        clip_path=clip_path,
        duration=float(duration),
        filmer_id=filmer_id,
        filmer_status="pending" if filmer_id else None,
        status="PENDING",
    )
    session.add(c)
    b.claim_count += 1
    await session.flush()
    _changed(session, "bounty_claims", c, None)
    _changed(session, "bounties", b, before)
    log.info("claim_submitted", bounty_id=str(b.id), claim_id=claim_id, claimer_id=actor_id, filmer_id=filmer_id)
    return {"claimId": claim_id}


async def confirm_filmer_tag(session: AsyncSession, actor_id: str, bounty_id: UUID, claim_id: str, *, accept: bool, now: datetime | None = None) -> dict:
    b = await _bounty(session, bounty_id, lock=False)
    c = await _claim(session, b, claim_id)
    if not c.filmer_id or c.filmer_id != actor_id:
        raise PermissionDenied("Only the tagged filmer can respond")
    if c.status in ("PAID", "WITHDRAWN"):
        raise FailedPrecondition("Claim is closed", status=c.status)

    before = snapshot(c)
    c.filmer_status = "confirmed" if accept else "declined"
    c.filmer_responded_at = now or utcnow()
    await session.flush()
    _changed(session, "bounty_claims", c, before)
    return {"success": True, "filmerStatus": c.filmer_status}


def _approve(b: Bounty, c: Claim, *, decided_by: str | None, role: str, note: str | None, now: datetime) -> None:
    c.status = "APPROVED"
    c.decision_by = decided_by
    c.decision_role = role
    c.decision_note = note
    c.decided_at = now
    b.status = "LOCKED"
    b.locked_at = now
    b.locked_reason = "Claim approved"
    log.info("bounty_locked", bounty_id=str(b.id), claim_id=c.id, decision_role=role)


async def cast_vote(
    session: AsyncSession,
    actor_id: str,
    bounty_id: UUID,
    claim_id: str,
    *,
    vote: str,
    comment: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    if vote not in ("APPROVE", "REJECT"):
        raise InvalidArgument("vote must be APPROVE or REJECT")
    b = await _bounty(session, bounty_id)
    c = await _claim(session, b, claim_id)
    if c.claimer_id == actor_id:
        raise FailedPrecondition("Cannot vote on your own claim")
    voter = await ensure_user(session, actor_id)
    reputation.ensure_can_vote(voter)
    if c.status != "PENDING":
        raise FailedPrecondition("Claim is not pending", status=c.status)
    if b.status != "OPEN":
        raise FailedPrecondition("Bounty is not open", status=b.status)
    await rate_limit.enforce(session, actor_id, "vote", now=now)

    bounty_before, claim_before = snapshot(b), snapshot(c)
    prior = await session.scalar(
        select(ClaimVote).where(ClaimVote.claim_id == c.id, ClaimVote.voter_id == actor_id).with_for_update()
    )
    if prior is None:
        session.add(ClaimVote(claim_id=c.id, voter_id=actor_id, vote=vote, weight=1, comment=comment))
        _count(c, vote, 1, +1)
        b.vote_count += 1
    else:
        if prior.vote != vote:
            # re-vote: move the voter's weight to the other side
            _count(c, prior.vote, prior.weight, -1)
            _count(c, vote, prior.weight, +1)
            prior.vote = vote
        prior.comment = comment
        prior.updated_at = now
    c.last_vote_at = now

    total = c.approve_count + c.reject_count
    weighted_total = c.weighted_approve + c.weighted_reject
    approved = (
        total >= b.min_votes
        and weighted_total > 0
        and c.weighted_approve / weighted_total >= b.approve_ratio
    )
    if approved:
        _approve(b, c, decided_by=None, role="AUTO", note=None, now=now)
        await reputation.adjust(session, c.claimer_id, settings.reputation_approved_bonus, reason="claim_approved")

    await session.flush()
    _changed(session, "bounty_claims", c, claim_before)
    _changed(session, "bounties", b, bounty_before)
    return {
        "success": True,
        "claimStatus": c.status,
        "approveCount": c.approve_count,
        "rejectCount": c.reject_count,
    }


def _count(c: Claim, vote: str, weight: int, sign: int) -> None:
    if vote == "APPROVE":
        c.approve_count += sign
        c.weighted_approve += sign * weight
    else:
        c.reject_count += sign
        c.weighted_reject += sign * weight


async def creator_decision(
    session: AsyncSession,
    actor_id: str,
    bounty_id: UUID,
    claim_id: str,
    *,
    decision: str,
    note: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    if decision not in ("APPROVE", "REJECT"):
        raise InvalidArgument("decision must be APPROVE or REJECT")
    b = await _bounty(session, bounty_id)
    if b.creator_id != actor_id:
        raise PermissionDenied("Only the bounty creator can decide")
    c = await _claim(session, b, claim_id)
    if c.status != "PENDING":
        raise FailedPrecondition("Claim is not pending", status=c.status)

    bounty_before, claim_before = snapshot(b), snapshot(c)
    if decision == "APPROVE":
        if b.status != "OPEN":
            raise FailedPrecondition("Bounty is not open", status=b.status)
        _approve(b, c, decided_by=actor_id, role="CREATOR", note=note, now=now)
        await reputation.adjust(session, c.claimer_id, settings.reputation_approved_bonus, reason="claim_approved")
    else:
        c.status = "REJECTED"
        c.decision_by = actor_id
        c.decision_role = "CREATOR"
        c.decision_note = note
        c.decided_at = now
        await reputation.adjust(session, c.claimer_id, -settings.reputation_rejected_penalty, reason="claim_rejected")

    await session.flush()
    _changed(session, "bounty_claims", c, claim_before)
    _changed(session, "bounties", b, bounty_before)
    log.info("claim_decided", bounty_id=str(b.id), claim_id=c.id, decision=decision)
    return {"success": True, "claimStatus": c.status, "bountyStatus": b.status}


async def withdraw_claim(session: AsyncSession, actor_id: str, bounty_id: UUID, claim_id: str) -> dict:
    b = await _bounty(session, bounty_id, lock=False)
    c = await _claim(session, b, claim_id)
    if c.claimer_id != actor_id:
        raise PermissionDenied("Only the claimer can withdraw")
    if c.status != "PENDING":
        raise FailedPrecondition("Claim is not pending", status=c.status)
    before = snapshot(c)
    c.status = "WITHDRAWN"
    await session.flush()
    _changed(session, "bounty_claims", c, before)
    return {"success": True, "claimStatus": c.status}


async def cancel_bounty(session: AsyncSession, actor_id: str, bounty_id: UUID) -> dict:
    b = await _bounty(session, bounty_id)
    if b.creator_id != actor_id:
        raise PermissionDenied("Only the bounty creator can cancel")
    if b.status != "OPEN":
        raise FailedPrecondition("Bounty is not open", status=b.status)
    active = await session.scalar(
        select(func.count()).select_from(Claim).where(Claim.bounty_id == b.id, Claim.status.in_(ACTIVE_CLAIM_STATUSES))
    )
    if active:
        raise FailedPrecondition("Bounty has active claims")

    before = snapshot(b)
    await write_ledger_tx(
        session,
        tx_id=f"cancel:{b.id}:refund",
        type="REFUND",
        amount=b.reward_total,
        currency=b.currency,
        from_id=escrow_account(b.id),
        to_id=b.creator_id,
        bounty_id=b.id,
        memo="bounty_cancelled",
    )
    await credit_tokens(session, user_id=b.creator_id, tokens=b.reward_total)
    b.status = "CANCELLED"
    await session.flush()
    _changed(session, "bounties", b, before)
    log.info("bounty_cancelled", bounty_id=str(b.id), refund=b.reward_total)
    return {"success": True, "status": b.status, "refund": b.reward_total}


async def pay_out_claim(session: AsyncSession, actor_id: str, bounty_id: UUID, claim_id: str, *, now: datetime | None = None) -> dict:
    """
    Settle an approved claim. Safe to call repeatedly: a PAID claim is
    returned unchanged, and every ledger entry has a deterministic id.
    """
    if "admin" not in await get_roles(session, actor_id):
        raise PermissionDenied("Admin role required")
    b = await _bounty(session, bounty_id)
    c = await _claim(session, b, claim_id)
    if c.status == "PAID":
        return {"success": True, "alreadyPaid": True, **_breakdown(c)}
    if c.status != "APPROVED":
        raise FailedPrecondition("Claim not approved", status=c.status)
    if b.status != "LOCKED":
        raise FailedPrecondition("Bounty not locked", status=b.status)

    split = compute_payout(
        b.reward_total,
        platform_fee_bps=b.platform_fee_bps,
        filmer_cut_bps=b.filmer_cut_bps,
        filmer_confirmed=bool(c.filmer_id) and c.filmer_status == "confirmed",
    )
    escrow = escrow_account(b.id)
    bounty_before, claim_before = snapshot(b), snapshot(c)

    if split.platform_fee > 0:
        await write_ledger_tx(
            session, tx_id=f"payout:{c.id}:fee", type="FEE", amount=split.platform_fee, currency=b.currency,
            from_id=escrow, to_id=PLATFORM_ACCOUNT, bounty_id=b.id, claim_id=c.id, memo="platform_fee",
        )
    await write_ledger_tx(
        session, tx_id=f"payout:{c.id}:claimer", type="PAYOUT", amount=split.claimer_amount, currency=b.currency,
        from_id=escrow, to_id=c.claimer_id, bounty_id=b.id, claim_id=c.id, memo="claimer_payout",
    )
    await credit_tokens(session, user_id=c.claimer_id, tokens=split.claimer_amount)
    if split.filmer_amount > 0:
        await write_ledger_tx(
            session, tx_id=f"payout:{c.id}:filmer", type="PAYOUT", amount=split.filmer_amount, currency=b.currency,
            from_id=escrow, to_id=c.filmer_id, bounty_id=b.id, claim_id=c.id, memo="filmer_payout",
        )
        await credit_tokens(session, user_id=c.filmer_id, tokens=split.filmer_amount)

    now = now or utcnow()
    c.status = "PAID"
    c.platform_fee = split.platform_fee
    c.net_reward = split.net_reward
    c.claimer_amount = split.claimer_amount
    c.filmer_amount = split.filmer_amount
    c.paid_at = now
    b.status = "PAID"
    await session.flush()
    _changed(session, "bounty_claims", c, claim_before)
    _changed(session, "bounties", b, bounty_before)
    log.info("claim_paid", bounty_id=str(b.id), claim_id=c.id, paid_by=actor_id, **_breakdown(c))
    return {"success": True, "alreadyPaid": False, **_breakdown(c)}


def _breakdown(c: Claim) -> dict:
    return {
        "platformFee": c.platform_fee,
        "netReward": c.net_reward,
        "claimerAmount": c.claimer_amount,
        "filmerAmount": c.filmer_amount,
    }


async def expire_bounty(session: AsyncSession, bounty_id: UUID, *, now: datetime | None = None) -> bool:
    now = now or utcnow()
    b = await session.get(Bounty, bounty_id, with_for_update=True, populate_existing=True)
    if b is None or b.status != "OPEN" or b.expires_at > now:
        return False

    refund, retained = compute_expiry_refund(b.reward_total, settings.expiry_refund_bps)
    before = snapshot(b)
    escrow = escrow_account(b.id)
    if refund > 0:
        await write_ledger_tx(
            session, tx_id=f"expire:{b.id}:refund", type="REFUND", amount=refund, currency=b.currency,
            from_id=escrow, to_id=b.creator_id, bounty_id=b.id, memo="bounty_expired_refund",
        )
        await credit_tokens(session, user_id=b.creator_id, tokens=refund)
    if retained > 0:
        await write_ledger_tx(
            session, tx_id=f"expire:{b.id}:fee", type="FEE", amount=retained, currency=b.currency,
            from_id=escrow, to_id=PLATFORM_ACCOUNT, bounty_id=b.id, memo="listing_fee",
        )
    b.status = "EXPIRED"
    await session.flush()
    _changed(session, "bounties", b, before)
    log.info("bounty_expired", bounty_id=str(b.id), refund=refund, retained=retained)
    return True


async def expire_bounties(*, session_factory: async_sessionmaker | None = None, now: datetime | None = None) -> list[UUID]:
    """Scheduled sweep. Each bounty expires in its own transaction."""
    now = now or utcnow()

    async def due(session: AsyncSession) -> list[UUID]:
        return (await session.execute(
            select(Bounty.id).where(Bounty.status == "OPEN", Bounty.expires_at <= now)
        )).scalars().all()

    expired: list[UUID] = []
    for bounty_id in await run_in_transaction(due, session_factory=session_factory):
        if await run_in_transaction(lambda s: expire_bounty(s, bounty_id, now=now), session_factory=session_factory):
            expired.append(bounty_id)
    log.info("bounties_expired", count=len(expired))
    return expired


async def get_bounty(session: AsyncSession, bounty_id: UUID) -> tuple[Bounty, list[Claim]]:
    b = await _bounty(session, bounty_id, lock=False)
    claims = (await session.execute(
        select(Claim).where(Claim.bounty_id == b.id).order_by(Claim.created_at.asc())
    )).scalars().all()
    return b, claims
