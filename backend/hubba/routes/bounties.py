from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.auth_deps import get_current_actor
from hubba.db import get_session, run_in_transaction
from hubba.schemas.bounty import (
    BountyCreate, BountyPublic, ClaimCreate, ClaimPublic, ClaimVoteIn, CreatorDecisionIn, FilmerResponse,
)
from hubba.services import bounties

router = APIRouter(prefix="/bounties", tags=["bounties"])

@router.post("", status_code=201)
async def create_bounty(body: BountyCreate, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: bounties.create_bounty(
        s, actor,
        spot_id=body.spot_id,
        trick_desc=body.trick_desc,
        reward_total=body.reward_total,
        expires_at=body.expires_at,
        rules=body.rules,
    ))

@router.get("/{bounty_id}", response_model=BountyPublic)
async def get_bounty(
    bounty_id: UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(get_current_actor),
):
    b, claims = await bounties.get_bounty(session, bounty_id)
    public = BountyPublic.model_validate(b)
    public.claims = [ClaimPublic.model_validate(c) for c in claims]
    return public

@router.post("/{bounty_id}/cancel")
async def cancel_bounty(bounty_id: UUID, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: bounties.cancel_bounty(s, actor, bounty_id))

@router.post("/{bounty_id}/claims", status_code=201)
async def submit_claim(bounty_id: UUID, body: ClaimCreate, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: bounties.submit_claim(
        s, actor, bounty_id,
        clip_path=body.clip_storage_path,
        duration=body.duration,
        filmer_id=body.filmer_id,
    ))

@router.post("/{bounty_id}/claims/{claim_id}/filmer")
async def confirm_filmer(bounty_id: UUID, claim_id: str, body: FilmerResponse, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: bounties.confirm_filmer_tag(s, actor, bounty_id, claim_id, accept=body.accept))

@router.post("/{bounty_id}/claims/{claim_id}/votes")
async def cast_vote(bounty_id: UUID, claim_id: str, body: ClaimVoteIn, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: bounties.cast_vote(
        s, actor, bounty_id, claim_id, vote=body.vote, comment=body.comment,
    ))

@router.post("/{bounty_id}/claims/{claim_id}/decision")
async def creator_decision(bounty_id: UUID, claim_id: str, body: CreatorDecisionIn, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: bounties.creator_decision(
        s, actor, bounty_id, claim_id, decision=body.decision, note=body.note,
    ))

@router.post("/{bounty_id}/claims/{claim_id}/withdraw")
async def withdraw_claim(bounty_id: UUID, claim_id: str, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: bounties.withdraw_claim(s, actor, bounty_id, claim_id))

@router.post("/{bounty_id}/claims/{claim_id}/payout")
async def pay_out_claim(bounty_id: UUID, claim_id: str, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: bounties.pay_out_claim(s, actor, bounty_id, claim_id))
