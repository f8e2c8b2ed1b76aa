"""
Database engine, session factory and transaction helper.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from forum_service.core.config import settings

T = TypeVar("T")

# Raised by lock timeouts, deadlocks, serialization failures and
# concurrent duplicate inserts. The whole transaction is safe to re-run.
TRANSIENT_ERRORS = (OperationalError, IntegrityError)


class Base(DeclarativeBase):
    """Declarative base for all models."""


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; in-memory SQLite shares one connection."""
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, echo=echo, **kwargs)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
    )


engine = create_engine(settings.database_url, echo=settings.database_echo)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Create tables for every registered model."""
    import forum_service.models  # noqa: F401  (registers models on Base)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine connection pool."""
    await engine.dispose()


async def run_in_transaction(
    work: Callable[[AsyncSession], Awaitable[T]],
    retries: int | None = None,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
) -> T:
    """
    Run ``work`` inside a single all-or-nothing transaction.

    The transaction commits when ``work`` returns and rolls back when it
    raises. Transient storage failures re-run the whole unit of work up to
    ``retries`` times before the error propagates.

    Args:
        work: Coroutine function receiving the session
        retries: Retry budget (default from settings)
        session_maker: Session factory (default: module factory)

    Returns:
        Whatever ``work`` returns
    """
    if retries is None:
        retries = settings.db_transient_retries
    maker = session_maker or async_session_maker

    attempt = 0
    while True:
        try:
            async with maker() as session:
                async with session.begin():
                    return await work(session)
        except TRANSIENT_ERRORS as e:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(
                f"Transient database error, retrying ({attempt}/{retries}): "
                f"{type(e).__name__}"
            )
