from __future__ import annotations
import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.config import settings
from hubba.db import record_change, snapshot
from hubba.errors import FailedPrecondition, InvalidArgument, PermissionDenied
from hubba.services import audit, rate_limit
from hubba.services.users import get_roles, get_user

log = structlog.get_logger()

VALID_ROLES = ("admin", "moderator", "verified_pro")


async def require_role(session: AsyncSession, actor_id: str, *roles: str) -> set[str]:
    held = await get_roles(session, actor_id)
    if not held & set(roles):
        raise PermissionDenied(f"Requires one of: {', '.join(roles)}")
    return held


async def manage_user_role(session: AsyncSession, actor_id: str, *, target_uid: str, role: str, action: str) -> dict:
    await rate_limit.enforce(session, actor_id, "role_manage")
    await require_role(session, actor_id, "admin")
    if role not in VALID_ROLES:
        raise InvalidArgument(f"Role must be one of: {', '.join(VALID_ROLES)}")
    if not target_uid:
        raise InvalidArgument("Invalid target user id")
    if action not in ("grant", "revoke"):
        raise InvalidArgument('Action must be "grant" or "revoke"')
    if target_uid == actor_id and role == "admin" and action == "revoke":
        raise FailedPrecondition("You cannot remove your own admin privileges")

    target = await get_user(session, target_uid, lock=True)
    before = snapshot(target)
    roles = list(target.roles or [])
    if action == "grant" and role not in roles:
        roles.append(role)
    elif action == "revoke":
        roles = [r for r in roles if r != role]
    target.roles = roles
    await session.flush()
    record_change(session, "users", target.id, before, snapshot(target))

    audit.record(session, "role_change", actor_id=actor_id, target_id=target_uid, role=role, changeType=action)
    log.info("role_changed", target_uid=target_uid, role=role, action=action, performed_by=actor_id)
    return {"success": True, "roles": roles}


async def get_user_roles(session: AsyncSession, actor_id: str, target_uid: str) -> dict:
    await require_role(session, actor_id, "admin")
    if not target_uid:
        raise InvalidArgument("Target uid required")
    target = await get_user(session, target_uid)
    return {"uid": target.id, "roles": list(target.roles or [])}


async def flag_abuse(session: AsyncSession, actor_id: str, target_uid: str, *, reason: str) -> dict:
    """Proven abuse: reputation penalty plus a ban."""
    await require_role(session, actor_id, "admin", "moderator")
    if not (reason or "").strip():
        raise InvalidArgument("A reason is required")
    target = await get_user(session, target_uid, lock=True)
    before = snapshot(target)
    target.reputation = max(0, target.reputation - settings.reputation_abuse_penalty)
    target.is_banned = True
    await session.flush()
    record_change(session, "users", target.id, before, snapshot(target))

    audit.record(session, "abuse_flagged", actor_id=actor_id, target_id=target_uid, reason=reason, reputation=target.reputation)
    log.info("abuse_flagged", target_uid=target_uid, flagged_by=actor_id, reputation=target.reputation)
    return {"success": True, "reputation": target.reputation, "isBanned": True}
