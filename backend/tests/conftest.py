from __future__ import annotations
import os
import tempfile

# Point the app at a throwaway SQLite file before anything imports hubba.config.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(prefix="hubba-"), "import.db")
os.environ["STORAGE_WEBHOOK_SECRET"] = "test-storage-secret"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ENVIRONMENT"] = "test"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from hubba import db, observers  # noqa: F401
from hubba.models.user import User
from hubba.security import make_access_token


@pytest_asyncio.fixture
async def session_factory(tmp_path, monkeypatch):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hubba.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(db, "SessionLocal", factory)
    yield factory
    await engine.dispose()


@pytest.fixture
def make_user(session_factory):
    async def _make(uid: str, **fields) -> User:
        async with session_factory() as session:
            user = User(id=uid, roles=fields.pop("roles", []), **fields)
            session.add(user)
            await session.commit()
            return user
    return _make


@pytest_asyncio.fixture
async def client(session_factory):
    from hubba.main import app
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth():
    def _headers(uid: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_access_token(uid)}"}
    return _headers
