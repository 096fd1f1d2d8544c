from __future__ import annotations
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.auth_deps import get_current_actor
from hubba.db import get_session, run_in_transaction
from hubba.schemas.admin import AbuseReport, RoleChange
from hubba.services import roles

router = APIRouter(prefix="/admin", tags=["admin"])

@router.post("/roles")
async def manage_user_role(body: RoleChange, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: roles.manage_user_role(
        s, actor, target_uid=body.target_uid, role=body.role, action=body.action,
    ))

@router.get("/roles/{target_uid}")
async def get_user_roles(
    target_uid: str,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(get_current_actor),
):
    return await roles.get_user_roles(session, actor, target_uid)

@router.post("/users/{target_uid}/abuse")
async def flag_abuse(target_uid: str, body: AbuseReport, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: roles.flag_abuse(s, actor, target_uid, reason=body.reason))
