from __future__ import annotations
from datetime import datetime, timedelta, timezone
from uuid import UUID
import pytest
from hubba.config import settings
from hubba.db import record_change, run_in_transaction, snapshot
from hubba.errors import DeadlineExceeded, FailedPrecondition, InvalidArgument, NotFound, PermissionDenied
from hubba.models.challenge import Challenge, Clip
from hubba.services import challenges

T0 = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


async def _create(now=T0) -> UUID:
    created = await run_in_transaction(lambda s: challenges.create_challenge(
        s, "alice", opponent_id="bob", clip_ref="kickflip.mp4", duration=10.0, now=now,
    ))
    return UUID(created["challengeId"])


async def _accept(challenge_id: UUID, now=T0 + timedelta(hours=1)) -> dict:
    return await run_in_transaction(lambda s: challenges.accept_challenge(
        s, "bob", challenge_id, clip_ref="heelflip.mp4", duration=11.0, now=now,
    ))


async def _set_clip_status(session_factory, challenge_id: UUID, uid: str, status: str, reason: str | None = None) -> None:
    async with session_factory() as session:
        clip = await session.get(Clip, (challenge_id, uid))
        clip.status = status
        clip.rejection_reason = reason
        await session.commit()


async def _open_voting(session_factory, make_user, now=T0 + timedelta(hours=2)) -> UUID:
    await make_user("alice")
    await make_user("bob")
    challenge_id = await _create()
    await _accept(challenge_id)
    await _set_clip_status(session_factory, challenge_id, "alice", "ready")
    await _set_clip_status(session_factory, challenge_id, "bob", "ready")
    assert await run_in_transaction(lambda s: challenges.mark_both_ready(s, challenge_id, now=now))
    return challenge_id


async def _vote(voter: str, challenge_id: UUID, voted_for: str, now=T0 + timedelta(hours=3)) -> dict:
    return await run_in_transaction(lambda s: challenges.cast_vote(s, voter, challenge_id, voted_for_id=voted_for, now=now))


async def _load(session_factory, challenge_id: UUID) -> Challenge:
    async with session_factory() as session:
        return await session.get(Challenge, challenge_id)


@pytest.mark.asyncio
async def test_create_challenge_sets_deadline_and_upload_path(session_factory, make_user):
    await make_user("alice")
    await make_user("bob")
    created = await run_in_transaction(lambda s: challenges.create_challenge(
        s, "alice", opponent_id="bob", clip_ref="uploads/kickflip.mp4", duration=10.0, now=T0,
    ))
    assert created["status"] == "creator_ready"
    assert created["uploadPath"] == f"challenges/{created['challengeId']}/alice/kickflip.mp4"

    ch = await _load(session_factory, UUID(created["challengeId"]))
    assert ch.participants == ["alice", "bob"]
    assert ch.deadline_at == T0 + timedelta(days=7)
    async with session_factory() as session:
        clip = await session.get(Clip, (ch.id, "alice"))
    assert clip.status == "pending_upload"


@pytest.mark.asyncio
async def test_create_challenge_rejects_bad_input(session_factory, make_user):
    await make_user("alice")
    with pytest.raises(InvalidArgument):
        await run_in_transaction(lambda s: challenges.create_challenge(s, "alice", opponent_id="alice", clip_ref="a.mp4", duration=10.0))
    with pytest.raises(NotFound):
        await run_in_transaction(lambda s: challenges.create_challenge(s, "alice", opponent_id="ghost", clip_ref="a.mp4", duration=10.0))
    await make_user("bob")
    with pytest.raises(InvalidArgument):
        await run_in_transaction(lambda s: challenges.create_challenge(s, "alice", opponent_id="bob", clip_ref="a.mp4", duration=16.0))
    with pytest.raises(InvalidArgument):
        await run_in_transaction(lambda s: challenges.create_challenge(s, "alice", opponent_id="bob", clip_ref="", duration=10.0))


@pytest.mark.asyncio
async def test_banned_creator_cannot_challenge(session_factory, make_user):
    await make_user("alice", is_banned=True)
    await make_user("bob")
    with pytest.raises(PermissionDenied):
        await _create()


@pytest.mark.asyncio
async def test_only_opponent_can_accept_before_deadline(session_factory, make_user):
    await make_user("alice")
    await make_user("bob")
    await make_user("carol")
    challenge_id = await _create()

    with pytest.raises(PermissionDenied):
        await run_in_transaction(lambda s: challenges.accept_challenge(
            s, "carol", challenge_id, clip_ref="x.mp4", duration=10.0, now=T0,
        ))
    with pytest.raises(DeadlineExceeded):
        await _accept(challenge_id, now=T0 + timedelta(days=7))

    accepted = await _accept(challenge_id)
    assert accepted == {
        "success": True,
        "status": "opponent_uploading",
        "uploadPath": f"challenges/{challenge_id}/bob/heelflip.mp4",
    }
    with pytest.raises(FailedPrecondition):
        await _accept(challenge_id)


@pytest.mark.asyncio
async def test_accept_unknown_challenge_is_not_found(session_factory, make_user):
    await make_user("bob")
    with pytest.raises(NotFound):
        await _accept(UUID("00000000-0000-4000-8000-000000000000"))


@pytest.mark.asyncio
async def test_mark_both_ready_requires_both_clips_and_is_idempotent(session_factory, make_user):
    await make_user("alice")
    await make_user("bob")
    challenge_id = await _create()
    await _accept(challenge_id)
    await _set_clip_status(session_factory, challenge_id, "alice", "ready")

    assert not await run_in_transaction(lambda s: challenges.mark_both_ready(s, challenge_id))

    await _set_clip_status(session_factory, challenge_id, "bob", "ready")
    opened_at = T0 + timedelta(hours=2)
    assert await run_in_transaction(lambda s: challenges.mark_both_ready(s, challenge_id, now=opened_at))
    assert not await run_in_transaction(lambda s: challenges.mark_both_ready(s, challenge_id))

    ch = await _load(session_factory, challenge_id)
    assert ch.status == "both_ready"
    assert ch.voting_ends_at == opened_at + timedelta(hours=48)


@pytest.mark.asyncio
async def test_clip_ready_change_triggers_both_ready(session_factory, make_user):
    await make_user("alice")
    await make_user("bob")
    challenge_id = await _create()
    await _accept(challenge_id)
    await _set_clip_status(session_factory, challenge_id, "alice", "ready")

    async def bob_ready(session):
        clip = await session.get(Clip, (challenge_id, "bob"))
        before = snapshot(clip)
        clip.status = "ready"
        await session.flush()
        record_change(session, "challenge_clips", (challenge_id, "bob"), before, snapshot(clip))

    await run_in_transaction(bob_ready)
    assert (await _load(session_factory, challenge_id)).status == "both_ready"


@pytest.mark.asyncio
async def test_sweep_opens_voting_missed_by_the_clip_subscriber(session_factory, make_user):
    await make_user("alice")
    await make_user("bob")
    await make_user("carol")
    stuck = await _create()
    await _accept(stuck)
    half = await run_in_transaction(lambda s: challenges.create_challenge(
        s, "carol", opponent_id="bob", clip_ref="tre.mp4", duration=9.0, now=T0,
    ))
    half = UUID(half["challengeId"])
    # status written without a change record, as if the subscriber never ran
    await _set_clip_status(session_factory, stuck, "alice", "ready")
    await _set_clip_status(session_factory, stuck, "bob", "ready")
    await _set_clip_status(session_factory, half, "carol", "ready")
    assert (await _load(session_factory, stuck)).status == "opponent_uploading"

    now = T0 + timedelta(hours=5)
    assert await challenges.open_ready_challenges(now=now) == [stuck]
    ch = await _load(session_factory, stuck)
    assert ch.status == "both_ready"
    assert ch.voting_ends_at == now + timedelta(hours=settings.voting_window_hours)
    assert (await _load(session_factory, half)).status == "creator_ready"

    assert await challenges.open_ready_challenges(now=now) == []


@pytest.mark.asyncio
async def test_rejected_clip_can_be_resubmitted(session_factory, make_user):
    await make_user("alice")
    await make_user("bob")
    challenge_id = await _create()
    await _set_clip_status(session_factory, challenge_id, "alice", "rejected", "duration_too_long")

    result = await run_in_transaction(lambda s: challenges.resubmit_clip(
        s, "alice", challenge_id, clip_ref="kickflip-short.mp4", duration=9.0,
    ))
    assert result["uploadPath"].endswith("/alice/kickflip-short.mp4")
    async with session_factory() as session:
        clip = await session.get(Clip, (challenge_id, "alice"))
    assert clip.status == "pending_upload" and clip.rejection_reason is None

    with pytest.raises(FailedPrecondition):
        await run_in_transaction(lambda s: challenges.resubmit_clip(
            s, "alice", challenge_id, clip_ref="again.mp4", duration=9.0,
        ))


@pytest.mark.asyncio
async def test_vote_guards(session_factory, make_user):
    challenge_id = await _open_voting(session_factory, make_user)
    await make_user("lowrep", reputation=10)

    with pytest.raises(PermissionDenied):
        await _vote("alice", challenge_id, "bob")
    with pytest.raises(FailedPrecondition):
        await _vote("lowrep", challenge_id, "bob")
    with pytest.raises(InvalidArgument):
        await _vote("dave", challenge_id, "dave")
    with pytest.raises(DeadlineExceeded):
        await _vote("dave", challenge_id, "bob", now=T0 + timedelta(hours=50))

    first = await _vote("dave", challenge_id, "bob")
    assert first["status"] == "voting"
    assert first["tally"] == {"alice": 0, "bob": 1}
    with pytest.raises(FailedPrecondition):
        await _vote("dave", challenge_id, "alice")


@pytest.mark.asyncio
async def test_vote_before_both_ready_is_rejected(session_factory, make_user):
    await make_user("alice")
    await make_user("bob")
    challenge_id = await _create()
    with pytest.raises(FailedPrecondition):
        await _vote("dave", challenge_id, "bob")


@pytest.mark.asyncio
async def test_reaching_quorum_settles_immediately(session_factory, make_user, monkeypatch):
    monkeypatch.setattr(settings, "challenge_vote_quorum", 3)
    challenge_id = await _open_voting(session_factory, make_user)

    await _vote("v1", challenge_id, "alice")
    await _vote("v2", challenge_id, "bob")
    last = await _vote("v3", challenge_id, "alice")

    assert last["status"] == "completed"
    assert last["totalVotes"] == 3
    ch = await _load(session_factory, challenge_id)
    assert (ch.result, ch.winner_id) == ("winner", "alice")
    with pytest.raises(FailedPrecondition):
        await _vote("v4", challenge_id, "bob")


@pytest.mark.asyncio
async def test_settle_waits_for_window_then_tie_is_draw(session_factory, make_user):
    challenge_id = await _open_voting(session_factory, make_user)
    await _vote("v1", challenge_id, "alice")
    await _vote("v2", challenge_id, "bob")

    with pytest.raises(FailedPrecondition):
        await run_in_transaction(lambda s: challenges.settle_challenge(s, challenge_id, now=T0 + timedelta(hours=10)))

    closed = T0 + timedelta(hours=50)
    result = await run_in_transaction(lambda s: challenges.settle_challenge(s, challenge_id, now=closed))
    assert result == {"status": "completed", "result": "draw", "winnerId": None, "alreadySettled": False}

    again = await run_in_transaction(lambda s: challenges.settle_challenge(s, challenge_id, now=closed))
    assert again["alreadySettled"] is True


@pytest.mark.asyncio
async def test_settle_due_challenges_sweeps_closed_windows(session_factory, make_user):
    challenge_id = await _open_voting(session_factory, make_user)
    await _vote("v1", challenge_id, "bob")

    assert await challenges.settle_due_challenges(now=T0 + timedelta(hours=20)) == []
    settled = await challenges.settle_due_challenges(now=T0 + timedelta(hours=51))
    assert settled == [challenge_id]
    assert await challenges.settle_due_challenges(now=T0 + timedelta(hours=52)) == []

    ch = await _load(session_factory, challenge_id)
    assert (ch.status, ch.result, ch.winner_id) == ("completed", "winner", "bob")


@pytest.mark.asyncio
async def test_unvoted_challenge_settles_as_draw(session_factory, make_user):
    challenge_id = await _open_voting(session_factory, make_user)
    await challenges.settle_due_challenges(now=T0 + timedelta(days=3))
    ch = await _load(session_factory, challenge_id)
    assert ch.result == "draw" and ch.winner_id is None
