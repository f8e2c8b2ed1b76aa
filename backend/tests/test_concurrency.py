import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forum_service.core import database
from forum_service.core.config import settings
from forum_service.core.database import Base, create_engine, run_in_transaction
from forum_service.core.exceptions import NotFoundError
from forum_service.models.forum import ForumVote
from forum_service.modules.forum import ForumService
from forum_service.modules.forum.threads import ThreadService
from forum_service.modules.forum.votes import VoteLedger


@pytest.fixture
async def file_session_maker(tmp_path, monkeypatch):
    """File-backed database so concurrent transactions use separate connections."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'forum.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(database, "async_session_maker", maker)
    monkeypatch.setattr(settings, "db_transient_retries", 5)
    yield maker
    await engine.dispose()


@pytest.fixture
def run(file_session_maker):
    async def _run(fn):
        async def unit(db):
            return await fn(ForumService(db))

        return await run_in_transaction(unit)

    return _run


def _gate(parties: int):
    """Hold each caller until ``parties`` callers have arrived."""
    arrived = 0
    ready = asyncio.Event()

    async def wait():
        nonlocal arrived
        arrived += 1
        if arrived >= parties:
            ready.set()
        await asyncio.wait_for(ready.wait(), timeout=5)

    return wait


async def test_concurrent_reply_deletes_decrement_once(run, monkeypatch, alice, bob, thread):
    first = await run(lambda forum: forum.threads.create_reply(thread.id, bob.user_id, "one"))
    await run(lambda forum: forum.threads.create_reply(thread.id, bob.user_id, "two"))

    # both requests see the reply as live before either deletes it
    gate = _gate(2)
    load_reply = ThreadService._load_reply

    async def load_then_wait(self, reply_id, for_update=False):
        reply = await load_reply(self, reply_id, for_update)
        await gate()
        return reply

    monkeypatch.setattr(ThreadService, "_load_reply", load_then_wait)

    results = await asyncio.gather(
        run(lambda forum: forum.threads.delete_reply(first.id, bob)),
        run(lambda forum: forum.threads.delete_reply(first.id, alice)),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], NotFoundError)

    page = await run(lambda forum: forum.threads.list_replies(thread.id))
    fetched = await run(lambda forum: forum.threads.get_thread(thread.id))
    assert page.total == 1
    assert fetched.reply_count == page.total


async def test_concurrent_toggles_by_one_voter(run, monkeypatch, bob, thread):
    gate = _gate(2)
    lock_target = VoteLedger._lock_target

    async def lock_then_wait(self, target, target_id):
        loaded = await lock_target(self, target, target_id)
        await gate()
        return loaded

    monkeypatch.setattr(VoteLedger, "_lock_target", lock_then_wait)

    results = await asyncio.gather(
        run(lambda forum: forum.votes.toggle(bob.user_id, "thread", thread.id)),
        run(lambda forum: forum.votes.toggle(bob.user_id, "thread", thread.id)),
    )
    assert sorted(r.liked for r in results) == [False, True]

    rows = await run(lambda forum: forum.votes.count("thread", thread.id))
    fetched = await run(lambda forum: forum.threads.get_thread(thread.id))
    assert rows <= 1
    assert fetched.like_count == rows


async def test_concurrent_likes_by_different_voters(run, file_session_maker, thread):
    voters = ["u1", "u2", "u3", "u4"]
    await asyncio.gather(
        *(run(lambda forum, v=v: forum.votes.toggle(v, "thread", thread.id)) for v in voters)
    )

    fetched = await run(lambda forum: forum.threads.get_thread(thread.id))
    async with file_session_maker() as session:
        result = await session.execute(
            select(func.count(ForumVote.id)).where(ForumVote.target_id == thread.id)
        )
    assert result.scalar_one() == len(voters)
    assert fetched.like_count == len(voters)
