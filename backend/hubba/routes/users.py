from __future__ import annotations
from fastapi import APIRouter, Depends
from hubba.auth_deps import get_current_actor
from hubba.db import run_in_transaction
from hubba.schemas.user import PushTokenIn
from hubba.services import notifications

router = APIRouter(prefix="/me", tags=["users"])

@router.put("/push-token")
async def register_push_token(body: PushTokenIn, actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: notifications.set_push_token(s, actor, body.token))

@router.delete("/push-token")
async def forget_push_token(actor: str = Depends(get_current_actor)):
    return await run_in_transaction(lambda s: notifications.set_push_token(s, actor, None))
