"""
Two-party S.K.A.T.E. battle lifecycle.

    creator_ready -> opponent_uploading -> both_ready -> voting -> completed

Every transition runs inside the caller's transaction with the challenge row
locked; status never moves backwards.
"""
from __future__ import annotations
import math
import posixpath
import uuid
from datetime import datetime, timedelta
from uuid import UUID
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from hubba.config import settings
from hubba.db import record_change, run_in_transaction, snapshot, utcnow
from hubba.errors import DeadlineExceeded, FailedPrecondition, InvalidArgument, NotFound, PermissionDenied
from hubba.events import DocumentChange, bus
from hubba.models.challenge import Challenge, ChallengeVote, Clip
from hubba.models.user import User
from hubba.services import rate_limit, reputation
from hubba.services.users import ensure_user

log = structlog.get_logger()

STATUS_ORDER = ["creator_ready", "opponent_uploading", "both_ready", "voting", "completed"]
STATUS_RANK = {s: i for i, s in enumerate(STATUS_ORDER)}
PRE_READY = {"creator_ready", "opponent_uploading"}
VOTABLE = {"both_ready", "voting"}


def clip_upload_path(challenge_id: UUID, user_id: str, clip_ref: str) -> str:
    name = posixpath.basename((clip_ref or "").strip())
    if not name or name in (".", ".."):
        raise InvalidArgument("clipRef must name a file")
    return f"challenges/{challenge_id}/{user_id}/{name}"


def validate_declared_duration(duration: float) -> None:
    if not math.isfinite(duration):
        raise InvalidArgument("Clip duration must be a finite number of seconds")
    upper = settings.clip_max_seconds + settings.clip_duration_tolerance
    if not (settings.clip_min_seconds <= float(duration) <= upper):
        raise InvalidArgument(
            f"Clip duration must be between {settings.clip_min_seconds:g}s and {settings.clip_max_seconds:g}s",
            duration=duration,
        )


def _advance(ch: Challenge, status: str) -> None:
    if STATUS_RANK[status] <= STATUS_RANK[ch.status]:
        raise FailedPrecondition(f"Cannot move challenge from {ch.status} to {status}")
    ch.status = status


async def _load_for_update(session: AsyncSession, challenge_id: UUID) -> Challenge:
    ch = await session.get(Challenge, challenge_id, with_for_update=True, populate_existing=True)
    if ch is None:
        raise NotFound("Challenge not found", challengeId=str(challenge_id))
    return ch


async def _clips(session: AsyncSession, challenge_id: UUID) -> list[Clip]:
    return (await session.execute(select(Clip).where(Clip.challenge_id == challenge_id))).scalars().all()


async def _write_clip(session: AsyncSession, ch: Challenge, user_id: str, clip_ref: str, duration: float, thumbnail: str | None) -> Clip:
    clip = Clip(
        challenge_id=ch.id,
        user_id=user_id,
        storage_path=clip_upload_path(ch.id, user_id, clip_ref),
        thumbnail_path=thumbnail,
        declared_duration=float(duration),
        status="pending_upload",
    )
    session.add(clip)
    await session.flush()
    record_change(session, "challenge_clips", (ch.id, user_id), None, snapshot(clip))
    return clip


async def create_challenge(
    session: AsyncSession,
    actor_id: str,
    *,
    opponent_id: str,
    clip_ref: str,
    duration: float,
    thumbnail: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    if opponent_id == actor_id:
        raise InvalidArgument("You cannot challenge yourself")
    validate_declared_duration(duration)
    creator = await ensure_user(session, actor_id)
    if creator.is_banned:
        raise PermissionDenied("Banned accounts cannot create challenges")
    if await session.get(User, opponent_id) is None:
        raise NotFound("Opponent not found", opponentId=opponent_id)
    await rate_limit.enforce(session, actor_id, "challenge_create", now=now)

    ch = Challenge(
        id=uuid.uuid4(),
        creator_id=actor_id,
        opponent_id=opponent_id,
        participants=[actor_id, opponent_id],
        status="creator_ready",
        deadline_at=now + timedelta(days=settings.challenge_deadline_days),
        vote_tally={},
    )
    session.add(ch)
    await session.flush()
    record_change(session, "challenges", ch.id, None, snapshot(ch))
    clip = await _write_clip(session, ch, actor_id, clip_ref, duration, thumbnail)

    log.info("challenge_created", challenge_id=str(ch.id), creator_id=actor_id, opponent_id=opponent_id)
    return {"challengeId": str(ch.id), "status": ch.status, "uploadPath": clip.storage_path}


async def accept_challenge(
    session: AsyncSession,
    actor_id: str,
    challenge_id: UUID,
    *,
    clip_ref: str,
    duration: float,
    thumbnail: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    validate_declared_duration(duration)
    ch = await _load_for_update(session, challenge_id)
    if ch.opponent_id != actor_id:
        raise PermissionDenied("Only the challenged skater can accept")
    if ch.status != "creator_ready":
        raise FailedPrecondition("Challenge is no longer awaiting acceptance", status=ch.status)
    if now >= ch.deadline_at:
        raise DeadlineExceeded("Challenge deadline has passed")

    before = snapshot(ch)
    clip = await _write_clip(session, ch, actor_id, clip_ref, duration, thumbnail)
    _advance(ch, "opponent_uploading")
    await session.flush()
    record_change(session, "challenges", ch.id, before, snapshot(ch))

    log.info("challenge_accepted", challenge_id=str(ch.id), opponent_id=actor_id)
    return {"success": True, "status": ch.status, "uploadPath": clip.storage_path}


async def resubmit_clip(
    session: AsyncSession,
    actor_id: str,
    challenge_id: UUID,
    *,
    clip_ref: str,
    duration: float,
    thumbnail: str | None = None,
) -> dict:
    """Replace a rejected clip while the challenge is still waiting on uploads."""
    validate_declared_duration(duration)
    ch = await _load_for_update(session, challenge_id)
    if actor_id not in ch.participants:
        raise PermissionDenied("Only participants can upload clips")
    if ch.status not in PRE_READY:
        raise FailedPrecondition("Clips are locked once both are ready", status=ch.status)
    clip = await session.get(Clip, (ch.id, actor_id), with_for_update=True, populate_existing=True)
    if clip is None or clip.status != "rejected":
        raise FailedPrecondition("Only a rejected clip can be re-uploaded")

    before = snapshot(clip)
    clip.storage_path = clip_upload_path(ch.id, actor_id, clip_ref)
    clip.thumbnail_path = thumbnail
    clip.declared_duration = float(duration)
    clip.status = "pending_upload"
    clip.rejection_reason = None
    clip.duration = clip.width = clip.height = None
    clip.codec = None
    await session.flush()
    record_change(session, "challenge_clips", (ch.id, actor_id), before, snapshot(clip))

    log.info("clip_resubmitted", challenge_id=str(ch.id), user_id=actor_id)
    return {"success": True, "status": ch.status, "uploadPath": clip.storage_path}


async def mark_both_ready(session: AsyncSession, challenge_id: UUID, *, now: datetime | None = None) -> bool:
    """
    Open voting once both participants' clips are ready.
    Returns False when there is nothing to do, so repeated or concurrent
    invocations converge on one transition.
    """
    now = now or utcnow()
    ch = await session.get(Challenge, challenge_id, with_for_update=True, populate_existing=True)
    if ch is None or ch.status not in PRE_READY:
        return False
    ready = {c.user_id for c in await _clips(session, ch.id) if c.status == "ready"}
    if not set(ch.participants) <= ready:
        return False

    before = snapshot(ch)
    _advance(ch, "both_ready")
    ch.voting_opened_at = now
    ch.voting_ends_at = now + timedelta(hours=settings.voting_window_hours)
    ch.vote_tally = {uid: 0 for uid in ch.participants}
    await session.flush()
    record_change(session, "challenges", ch.id, before, snapshot(ch))
    log.info("challenge_both_ready", challenge_id=str(ch.id), voting_ends_at=ch.voting_ends_at.isoformat())
    return True


@bus.subscribe("challenge_clips")
async def on_clip_change(change: DocumentChange, *, session_factory: async_sessionmaker | None = None, **_) -> None:
    if not change.became("status", "ready"):
        return
    challenge_id = change.value("challenge_id")
    await run_in_transaction(lambda s: mark_both_ready(s, challenge_id), session_factory=session_factory)


def _settle(ch: Challenge, now: datetime) -> None:
    tally = {uid: int(ch.vote_tally.get(uid, 0)) for uid in ch.participants}
    top = max(tally.values()) if tally else 0
    leaders = [uid for uid, votes in tally.items() if votes == top]
    if len(leaders) == 1 and top > 0:
        ch.result = "winner"
        ch.winner_id = leaders[0]
    else:
        ch.result = "draw"
        ch.winner_id = None
    _advance(ch, "completed")
    ch.completed_at = now
    log.info("challenge_completed", challenge_id=str(ch.id), result=ch.result, winner_id=ch.winner_id, tally=tally)


async def cast_vote(
    session: AsyncSession,
    actor_id: str,
    challenge_id: UUID,
    *,
    voted_for_id: str,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    ch = await _load_for_update(session, challenge_id)
    if actor_id in ch.participants:
        raise PermissionDenied("Participants cannot vote on their own challenge")
    voter = await ensure_user(session, actor_id)
    reputation.ensure_can_vote(voter)
    if voted_for_id not in ch.participants:
        raise InvalidArgument("You can only vote for a participant")
    if ch.status not in VOTABLE:
        raise FailedPrecondition("Challenge is not open for voting", status=ch.status)
    if ch.voting_ends_at is None or now >= ch.voting_ends_at:
        raise DeadlineExceeded("Voting window has closed")
    already = await session.scalar(
        select(ChallengeVote).where(ChallengeVote.challenge_id == ch.id, ChallengeVote.voter_id == actor_id)
    )
    if already:
        raise FailedPrecondition("You have already voted on this challenge")
    await rate_limit.enforce(session, actor_id, "vote", now=now)

    before = snapshot(ch)
    vote = ChallengeVote(challenge_id=ch.id, voter_id=actor_id, voted_for_id=voted_for_id, weight=1)
    session.add(vote)
    tally = dict(ch.vote_tally or {})
    tally[voted_for_id] = int(tally.get(voted_for_id, 0)) + vote.weight
    ch.vote_tally = tally
    if ch.status == "both_ready":
        _advance(ch, "voting")
    total = sum(int(v) for v in tally.values())
    if total >= settings.challenge_vote_quorum:
        _settle(ch, now)
    await session.flush()
    record_change(session, "challenges", ch.id, before, snapshot(ch))

    return {"success": True, "status": ch.status, "tally": tally, "totalVotes": total}


async def settle_challenge(session: AsyncSession, challenge_id: UUID, *, now: datetime | None = None) -> dict:
    """Close voting once the window has elapsed. Completed challenges are returned as-is."""
    now = now or utcnow()
    ch = await _load_for_update(session, challenge_id)
    if ch.status == "completed":
        return {"status": ch.status, "result": ch.result, "winnerId": ch.winner_id, "alreadySettled": True}
    if ch.status not in VOTABLE:
        raise FailedPrecondition("Challenge has not reached voting", status=ch.status)
    if ch.voting_ends_at is not None and now < ch.voting_ends_at:
        raise FailedPrecondition("Voting window is still open")

    before = snapshot(ch)
    _settle(ch, now)
    await session.flush()
    record_change(session, "challenges", ch.id, before, snapshot(ch))
    return {"status": ch.status, "result": ch.result, "winnerId": ch.winner_id, "alreadySettled": False}


async def settle_due_challenges(*, session_factory: async_sessionmaker | None = None, now: datetime | None = None) -> list[UUID]:
    """Scheduled sweep: settle every challenge whose voting window has elapsed."""
    now = now or utcnow()

    async def due(session: AsyncSession) -> list[UUID]:
        return (await session.execute(
            select(Challenge.id).where(Challenge.status.in_(VOTABLE), Challenge.voting_ends_at <= now)
        )).scalars().all()

    settled: list[UUID] = []
    for challenge_id in await run_in_transaction(due, session_factory=session_factory):
        result = await run_in_transaction(lambda s: settle_challenge(s, challenge_id, now=now), session_factory=session_factory)
        if not result["alreadySettled"]:
            settled.append(challenge_id)
    log.info("challenges_settled", count=len(settled))
    return settled


async def open_ready_challenges(*, session_factory: async_sessionmaker | None = None, now: datetime | None = None) -> list[UUID]:
    """Scheduled sweep: open voting on challenges whose clips are all ready but whose transition was missed."""
    now = now or utcnow()

    async def stuck(session: AsyncSession) -> list[UUID]:
        ready = (
            select(Clip.challenge_id)
            .where(Clip.status == "ready")
            .group_by(Clip.challenge_id)
            .having(func.count() >= 2)
        )
        return (await session.execute(
            select(Challenge.id).where(Challenge.status.in_(PRE_READY), Challenge.id.in_(ready))
        )).scalars().all()

    opened: list[UUID] = []
    for challenge_id in await run_in_transaction(stuck, session_factory=session_factory):
        if await run_in_transaction(lambda s: mark_both_ready(s, challenge_id, now=now), session_factory=session_factory):
            opened.append(challenge_id)
    if opened:
        log.warning("challenges_opened_by_sweep", count=len(opened))
    return opened


async def get_challenge(session: AsyncSession, challenge_id: UUID) -> tuple[Challenge, list[Clip]]:
    ch = await session.get(Challenge, challenge_id)
    if ch is None:
        raise NotFound("Challenge not found", challengeId=str(challenge_id))
    return ch, await _clips(session, ch.id)
