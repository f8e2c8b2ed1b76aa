"""
Forum models for community discussions.

Includes:
- Categories (sections)
- Threads
- Replies
- Votes (likes)
- Moderation log
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from forum_service.core.database import Base, utcnow


class VoteTarget(str, PyEnum):
    """Kind of entity a vote points at."""

    THREAD = "thread"
    REPLY = "reply"


class ForumCategory(Base):
    """Forum category/section."""

    __tablename__ = "forum_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100))
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    description: Mapped[str] = mapped_column(Text)
    icon: Mapped[str] = mapped_column(String(50))  # Icon token
    color: Mapped[str] = mapped_column(String(20))  # Color token
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<ForumCategory {self.name}>"


class ForumThread(Base):
    """Forum thread."""

    __tablename__ = "forum_threads"
    __table_args__ = (
        Index("ix_forum_threads_live_activity", "is_deleted", "updated_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # NULL only for soft-deleted threads whose category was removed
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("forum_categories.id", ondelete="SET NULL"), index=True
    )
    author_id: Mapped[str] = mapped_column(String(64), index=True)

    title: Mapped[str] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Status
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)
    deleted_by: Mapped[str | None] = mapped_column(String(64))

    # Last moderator action
    moderated_at: Mapped[datetime | None] = mapped_column(DateTime)
    moderated_by: Mapped[str | None] = mapped_column(String(64))
    moderation_reason: Mapped[str | None] = mapped_column(Text)

    # Stats
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    reply_count: Mapped[int] = mapped_column(Integer, default=0)
    like_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps (updated_at tracks activity and is set by the service)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<ForumThread {self.title[:30]}>"


class ForumReply(Base):
    """Reply in a thread."""

    __tablename__ = "forum_replies"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        ForeignKey("forum_threads.id"), index=True
    )
    author_id: Mapped[str] = mapped_column(String(64), index=True)

    content: Mapped[str] = mapped_column(Text)

    # Status
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)
    deleted_by: Mapped[str | None] = mapped_column(String(64))

    # Stats
    like_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<ForumReply {self.id} in thread {self.thread_id}>"


class ForumVote(Base):
    """Like on a thread or reply. One row per voter and target."""

    __tablename__ = "forum_votes"
    __table_args__ = (
        UniqueConstraint(
            "voter_id", "target_type", "target_id", name="uq_forum_vote"
        ),
        Index("ix_forum_votes_target", "target_type", "target_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    voter_id: Mapped[str] = mapped_column(String(64))
    target_type: Mapped[str] = mapped_column(String(10))
    target_id: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ForumModerationLog(Base):
    """Audit record of a moderator action on a thread."""

    __tablename__ = "forum_moderation_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        ForeignKey("forum_threads.id"), index=True
    )
    moderator_id: Mapped[str] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(20))
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
