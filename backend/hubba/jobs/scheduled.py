"""
Periodic sweeps. Each is safe to run concurrently with itself and with RPC traffic.

Every sweep re-enqueues itself on the worker's scheduler when it finishes, so
once a worker has seeded the queue (schedule_sweeps) the cycle keeps going.
"""
from __future__ import annotations
from datetime import timedelta
from typing import Any, Awaitable, Callable
import structlog
from rq import Queue, get_current_job
from rq.job import Job
from hubba.db import run_in_transaction
from hubba.jobs.worker import run_sync
from hubba.services import bounties, challenges, rate_limit
from hubba.services.notifications import ExpoPushTransport, PushTransport, deliver_pending

log = structlog.get_logger()

async def _expire_bounties() -> dict[str, Any]:
    expired = await bounties.expire_bounties()
    return {"expired": [str(b) for b in expired]}

async def _settle_challenges() -> dict[str, Any]:
    opened = await challenges.open_ready_challenges()
    settled = await challenges.settle_due_challenges()
    return {"settled": [str(c) for c in settled], "opened": [str(c) for c in opened]}

async def _cleanup_rate_limits() -> dict[str, Any]:
    deleted = await run_in_transaction(lambda s: rate_limit.cleanup(s))
    return {"deleted": deleted}

async def _deliver_notifications(transport: PushTransport | None = None) -> dict[str, Any]:
    return await deliver_pending(transport or ExpoPushTransport())

TICKS: dict[str, Callable[[], Awaitable[dict[str, Any]]]] = {
    "expire_bounties": _expire_bounties,
    "settle_challenges": _settle_challenges,
    "cleanup_rate_limits": _cleanup_rate_limits,
    "deliver_notifications": _deliver_notifications,
}

SWEEPS: dict[str, timedelta] = {
    "expire_bounties": timedelta(hours=1),
    "settle_challenges": timedelta(minutes=5),
    "cleanup_rate_limits": timedelta(days=1),
    "deliver_notifications": timedelta(minutes=1),
}

def _func_path(name: str) -> str:
    return f"{__name__}.{name}"

def _reschedule(name: str) -> None:
    job = get_current_job()
    if job is None:
        return
    queue = Queue(job.origin, connection=job.connection)
    queue.enqueue_in(SWEEPS[name], _func_path(name))
    log.info("sweep_rescheduled", sweep=name, every=SWEEPS[name].total_seconds())

def _sweep(name: str) -> dict[str, Any]:
    try:
        return run_sync(TICKS[name])
    finally:
        _reschedule(name)

def pending_sweeps(queue: Queue) -> set[str]:
    """Sweeps that are already queued, scheduled or running on `queue`."""
    ids = list(queue.job_ids)
    ids += queue.scheduled_job_registry.get_job_ids()
    ids += queue.started_job_registry.get_job_ids()
    names = set()
    for job in Job.fetch_many(ids, connection=queue.connection):
        if job is None:
            continue
        module, _, name = (job.func_name or "").rpartition(".")
        if module == __name__ and name in SWEEPS:
            names.add(name)
    return names

def schedule_sweeps(queue: Queue) -> list[str]:
    """Seed one run of every sweep that is not already in flight."""
    pending = pending_sweeps(queue)
    seeded = [name for name in SWEEPS if name not in pending]
    for name in seeded:
        queue.enqueue(_func_path(name))
    log.info("sweeps_scheduled", seeded=seeded, pending=sorted(pending))
    return seeded

# RQ entry points (sync)

def expire_bounties() -> dict[str, Any]:
    return _sweep("expire_bounties")

def settle_challenges() -> dict[str, Any]:
    return _sweep("settle_challenges")

def cleanup_rate_limits() -> dict[str, Any]:
    return _sweep("cleanup_rate_limits")

def deliver_notifications() -> dict[str, Any]:
    return _sweep("deliver_notifications")
