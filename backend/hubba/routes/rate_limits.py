from __future__ import annotations
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.auth_deps import get_current_actor
from hubba.db import get_session
from hubba.services import rate_limit

router = APIRouter(prefix="/rate-limits", tags=["rate-limits"])

@router.get("/{action}")
async def check_rate_limit_status(
    action: str,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(get_current_actor),
):
    decision = await rate_limit.get_status(session, actor, action)
    return decision.to_dict()
