from __future__ import annotations
from typing import Any
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.models.audit import AuditLog


def record(session: AsyncSession, action: str, *, actor_id: str | None, target_id: str | None, **payload: Any) -> AuditLog:
    entry = AuditLog(action=action, actor_id=actor_id, target_id=target_id, payload=payload)
    session.add(entry)
    return entry
