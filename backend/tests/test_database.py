import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from forum_service.core.database import run_in_transaction
from forum_service.core.exceptions import ValidationError
from forum_service.models.forum import ForumCategory


def _category(name, slug):
    return ForumCategory(name=name, slug=slug, description="d", icon="folder", color="blue")


def _locked_error():
    return OperationalError("UPDATE forum_threads", {}, Exception("database is locked"))


async def _category_count(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(func.count(ForumCategory.id)))
        return result.scalar_one()


async def test_commits_on_success(session_maker):
    async def work(db):
        db.add(_category("News", "news"))
        return "done"

    assert await run_in_transaction(work) == "done"
    assert await _category_count(session_maker) == 1


async def test_retries_transient_error_once(session_maker):
    calls = []

    async def work(db):
        calls.append(1)
        db.add(_category(f"News {len(calls)}", f"news-{len(calls)}"))
        await db.flush()
        if len(calls) == 1:
            raise _locked_error()
        return len(calls)

    assert await run_in_transaction(work, retries=1) == 2
    # the first attempt's insert was rolled back
    assert await _category_count(session_maker) == 1


async def test_gives_up_after_retry_budget(session_maker):
    calls = []

    async def work(db):
        calls.append(1)
        raise _locked_error()

    with pytest.raises(OperationalError):
        await run_in_transaction(work, retries=2)
    assert len(calls) == 3


async def test_domain_errors_roll_back_without_retry(session_maker):
    calls = []

    async def work(db):
        calls.append(1)
        db.add(_category("News", "news"))
        await db.flush()
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        await run_in_transaction(work)
    assert len(calls) == 1
    assert await _category_count(session_maker) == 0
