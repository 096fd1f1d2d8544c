from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.auth_deps import get_current_actor
from hubba.db import get_session
from hubba.errors import PermissionDenied
from hubba.schemas.ledger import LedgerEntryPublic, LedgerSnapshot, WalletPublic
from hubba.services import ledger
from hubba.services.bounties import get_bounty
from hubba.services.users import ensure_user, get_roles

router = APIRouter(tags=["ledger"])

@router.get("/wallet", response_model=WalletPublic)
async def get_wallet(session: AsyncSession = Depends(get_session), actor: str = Depends(get_current_actor)):
    user = await ensure_user(session, actor)
    await session.commit()
    return WalletPublic(
        user_id=user.id,
        balance=user.wallet_balance,
        reputation=user.reputation,
        is_banned=user.is_banned,
        roles=list(user.roles or []),
    )

@router.get("/ledger", response_model=LedgerSnapshot)
async def get_ledger(
    bounty_id: UUID | None = Query(default=None, alias="bountyId"),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(get_current_actor),
):
    """Bounty ledger for its creator or an admin; otherwise the caller's own entries."""
    if bounty_id is None:
        entries = await ledger.entries_for_user(session, actor, limit=limit)
        return LedgerSnapshot(
            net=sum(e.amount for e in entries if e.to_id == actor or (e.from_id == actor and e.amount < 0)),
            entries=[LedgerEntryPublic.model_validate(e) for e in entries],
        )

    b, _ = await get_bounty(session, bounty_id)
    if b.creator_id != actor and "admin" not in await get_roles(session, actor):
        raise PermissionDenied("Only the bounty creator or an admin can view this ledger")
    entries = await ledger.entries_for_bounty(session, b.id)
    return LedgerSnapshot(
        bounty_id=b.id,
        net=await ledger.bounty_net(session, b.id),
        entries=[LedgerEntryPublic.model_validate(e) for e in entries],
    )
