import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forum_service.core import database
from forum_service.core.database import Base, create_engine, run_in_transaction
from forum_service.core.security import Caller
from forum_service.main import app
from forum_service.modules.forum import ForumService

import forum_service.models  # noqa: F401


@pytest.fixture
async def session_maker(monkeypatch):
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(database, "async_session_maker", maker)
    yield maker
    await engine.dispose()


@pytest.fixture
def run(session_maker):
    """Run ``fn(forum)`` in its own transaction, like one API request."""

    async def _run(fn):
        async def unit(db):
            return await fn(ForumService(db))

        return await run_in_transaction(unit)

    return _run


@pytest.fixture
def admin():
    return Caller(user_id="admin-1", role="admin")


@pytest.fixture
def alice():
    return Caller(user_id="alice")


@pytest.fixture
def bob():
    return Caller(user_id="bob")


@pytest.fixture
async def category(run, admin):
    summary = await run(
        lambda forum: forum.categories.create_category(admin, "General", "General talk")
    )
    return summary.category


@pytest.fixture
async def thread(run, alice, category):
    return await run(
        lambda forum: forum.threads.create_thread(
            alice.user_id, category.id, "Hello", "First post", ["intro"]
        )
    )


@pytest.fixture
async def client(session_maker):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def auth():
    def _headers(caller: Caller) -> dict[str, str]:
        return {"X-User-Id": caller.user_id, "X-User-Role": caller.role}

    return _headers
