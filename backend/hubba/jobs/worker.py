from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, TypeVar
import structlog
from redis import Redis
from rq import Queue, Worker
from hubba import db, observers  # noqa: F401  (registers change-bus subscribers)
from hubba.config import settings
from hubba.logging_setup import configure_logging

log = structlog.get_logger()

T = TypeVar("T")

def run_sync(fn: Callable[..., Awaitable[T]], *args: Any) -> T:
    """
    Run an async job body from a sync RQ entry point. Each call gets its own
    event loop, so pooled connections are dropped before it closes.
    """
    async def _run() -> T:
        try:
            return await fn(*args)
        finally:
            await db.engine.dispose()
    return asyncio.run(_run())

def main() -> None:
    configure_logging()
    redis = Redis.from_url(settings.redis_url)
    queue = Queue("default", connection=redis)
    from hubba.jobs.scheduled import schedule_sweeps
    schedule_sweeps(queue)
    log.info("worker_start", queue="default")
    Worker([queue], connection=redis).work(with_scheduler=True)

if __name__ == "__main__":
    main()
