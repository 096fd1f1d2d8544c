from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.auth_deps import get_current_actor
from hubba.db import get_session, run_in_transaction
from hubba.schemas.challenge import ChallengeCreate, ChallengePublic, ChallengeVoteIn, ClipPublic, ClipUpload
from hubba.services import challenges

router = APIRouter(prefix="/challenges", tags=["challenges"])

@router.post("", status_code=201)
async def create_challenge(body: ChallengeCreate, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: challenges.create_challenge(
        s, actor,
        opponent_id=body.opponent_id,
        clip_ref=body.clip_ref,
        duration=body.duration,
        thumbnail=body.thumbnail,
    ))

@router.post("/{challenge_id}/accept")
async def accept_challenge(challenge_id: UUID, body: ClipUpload, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: challenges.accept_challenge(
        s, actor, challenge_id,
        clip_ref=body.clip_ref,
        duration=body.duration,
        thumbnail=body.thumbnail,
    ))

@router.post("/{challenge_id}/clips")
async def resubmit_clip(challenge_id: UUID, body: ClipUpload, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: challenges.resubmit_clip(
        s, actor, challenge_id,
        clip_ref=body.clip_ref,
        duration=body.duration,
        thumbnail=body.thumbnail,
    ))

@router.post("/{challenge_id}/votes")
async def cast_vote(challenge_id: UUID, body: ChallengeVoteIn, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: challenges.cast_vote(s, actor, challenge_id, voted_for_id=body.voted_for_id))

@router.get("/{challenge_id}", response_model=ChallengePublic)
async def get_challenge(
    challenge_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(get_current_actor),
):
    ch, clips = await challenges.get_challenge(session, challenge_id)
    public = ChallengePublic.model_validate(ch)
    public.clips = [ClipPublic.model_validate(c) for c in clips]
    return public
