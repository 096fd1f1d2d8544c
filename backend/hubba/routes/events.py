from __future__ import annotations
import hmac
from fastapi import APIRouter, Depends, Header
from rq import Queue
from redis import Redis
from sqlalchemy.ext.asyncio import AsyncSession
from hubba.auth_deps import get_current_actor
from hubba.config import settings
from hubba.db import get_session
from hubba.errors import InvalidArgument, Unauthenticated
from hubba.jobs.scheduled import TICKS
from hubba.jobs.validate_video import validate_video
from hubba.schemas.admin import StorageFinalize
from hubba.services.roles import require_role

router = APIRouter(tags=["events"])

# RQ queue (lazy single instance)
_redis = Redis.from_url(settings.redis_url)
q = Queue("default", connection=_redis)

@router.post("/events/storage/finalize", status_code=202)
async def storage_finalized(body: StorageFinalize, x_storage_secret: str | None = Header(default=None)):
    if not x_storage_secret or not hmac.compare_digest(x_storage_secret, settings.storage_webhook_secret):
        raise Unauthenticated("Invalid storage notification secret")
    if not body.name.startswith("challenges/"):
        return {"queued": False}
    job = q.enqueue(validate_video, {
        "path": body.name,
        "generation": str(body.generation),
        "metageneration": str(body.metageneration),
        "content_type": body.content_type,
        "size": body.size,
    })
    return {"queued": True, "jobId": job.id}

@router.post("/internal/ticks/{job}")
async def run_tick(
    job: str,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(get_current_actor),
):
    """Run a scheduled job inline. Admin only."""
    await require_role(session, actor, "admin")
    await session.close()
    tick = TICKS.get(job)
    if tick is None:
        raise InvalidArgument(f"Unknown job: {job}", jobs=sorted(TICKS))
    return {"job": job, "result": await tick()}
