from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar
import structlog
from sqlalchemy import DateTime, JSON, inspect
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator
from hubba.config import settings
from hubba.events import DocumentChange, bus

log = structlog.get_logger()

T = TypeVar("T")

PENDING_CHANGES = "pending_changes"

class Base(DeclarativeBase):
    pass

engine = create_async_engine(settings.database_url, future=True, echo=False)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


def utcnow() -> datetime:
    return datetime.now(dt_tz.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend (SQLite drops tzinfo)."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt_tz.utc)
        return value.astimezone(dt_tz.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt_tz.utc)
        return value.astimezone(dt_tz.utc)


JSONType = JSON().with_variant(JSONB(), "postgresql")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


def snapshot(obj: Any) -> dict[str, Any]:
    """Column values of an ORM object, detached from later mutation."""
    data: dict[str, Any] = {}
    for attr in inspect(obj).mapper.column_attrs:
        value = getattr(obj, attr.key)
        if isinstance(value, dict):
            value = dict(value)
        elif isinstance(value, list):
            value = list(value)
        data[attr.key] = value
    return data


def record_change(session: AsyncSession, collection: str, key: Any, before: dict | None, after: dict | None) -> None:
    """Queue a change to publish once the surrounding transaction commits."""
    session.info.setdefault(PENDING_CHANGES, []).append(
        DocumentChange(collection=collection, key=key, before=before, after=after)
    )


async def run_in_transaction(
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    session_factory: async_sessionmaker | None = None,
    attempts: int = 3,
) -> T:
    """
    Run `fn` as one atomic unit of work.

    Conflicts surfaced by the database (unique-key races, serialization
    failures, lock timeouts) re-run the whole unit on a fresh session.
    Changes recorded with `record_change` are published after commit only.
    """
    factory = session_factory or SessionLocal
    attempt = 0
    while True:
        attempt += 1
        async with factory() as session:
            try:
                async with session.begin():
                    result = await fn(session)
            except (IntegrityError, OperationalError) as exc:
                if attempt >= attempts:
                    raise
                log.warning("transaction_retry", attempt=attempt, error=str(getattr(exc, "orig", exc)))
                continue
            changes: list[DocumentChange] = session.info.pop(PENDING_CHANGES, [])
        for change in changes:
            await bus.publish(change, session_factory=factory)
        return result
