"""
Thread moderation.

Pin, lock and delete are three independent flags on a thread. Locking or
deleting a thread closes it for content changes (replies, edits, likes);
deletion itself stays allowed on locked threads.
"""

from enum import Enum

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forum_service.core.database import utcnow
from forum_service.core.exceptions import (
    ForbiddenError,
    LockedError,
    NotFoundError,
    ValidationError,
)
from forum_service.core.security import Caller
from forum_service.models.forum import ForumModerationLog, ForumThread


class ModerationAction(str, Enum):
    """Administrator actions on a thread."""

    PIN = "pin"
    UNPIN = "unpin"
    LOCK = "lock"
    UNLOCK = "unlock"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: str) -> "ModerationAction":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            allowed = ", ".join(a.value for a in cls)
            raise ValidationError(
                f"Unknown moderation action (expected one of: {allowed})"
            ) from None


def ensure_writable(thread: ForumThread) -> None:
    """Reject content changes on a locked or deleted thread."""
    if thread.is_deleted:
        raise LockedError("Thread has been deleted")
    if thread.is_locked:
        raise LockedError("Thread is locked")


def ensure_admin(caller: Caller, message: str = "Admin access required") -> None:
    if not caller.is_admin:
        raise ForbiddenError(message)


def soft_delete_thread(thread: ForumThread, deleted_by: str) -> None:
    thread.is_deleted = True
    thread.deleted_at = utcnow()
    thread.deleted_by = deleted_by


def apply_action(thread: ForumThread, action: ModerationAction, moderator_id: str) -> None:
    """Flip the flag an action controls. Re-applying an action is a no-op."""
    if action is ModerationAction.PIN:
        thread.is_pinned = True
    elif action is ModerationAction.UNPIN:
        thread.is_pinned = False
    elif action is ModerationAction.LOCK:
        thread.is_locked = True
    elif action is ModerationAction.UNLOCK:
        thread.is_locked = False
    elif action is ModerationAction.DELETE:
        soft_delete_thread(thread, moderator_id)


class ModerationService:
    """
    Administrator moderation of threads.

    Usage:
        moderation = ModerationService(db_session)
        thread = await moderation.moderate(thread_id, "lock", admin)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize moderation service with database session."""
        self.db = db

    async def moderate(
        self,
        thread_id: int,
        action: str | ModerationAction,
        moderator: Caller,
        reason: str | None = None,
    ) -> ForumThread:
        """
        Apply a moderation action and record it in the audit log.

        Args:
            thread_id: Thread ID
            action: One of pin, unpin, lock, unlock, delete
            moderator: Acting administrator
            reason: Optional free-text reason

        Returns:
            The thread after the action
        """
        ensure_admin(moderator)
        action = ModerationAction.parse(action) if isinstance(action, str) else action

        result = await self.db.execute(
            select(ForumThread)
            .where(ForumThread.id == thread_id, ForumThread.is_deleted == False)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        thread = result.scalar_one_or_none()
        if not thread:
            raise NotFoundError("Thread not found")

        reason = (reason or "").strip() or None
        apply_action(thread, action, moderator.user_id)
        thread.moderated_at = utcnow()
        thread.moderated_by = moderator.user_id
        thread.moderation_reason = reason

        self.db.add(
            ForumModerationLog(
                thread_id=thread.id,
                moderator_id=moderator.user_id,
                action=action.value,
                reason=reason,
            )
        )
        await self.db.flush()

        logger.info(f"Thread {thread.id} moderated: {action.value} by {moderator.user_id}")
        return thread

    async def get_history(self, thread_id: int, caller: Caller) -> list[ForumModerationLog]:
        """Get moderation log for a thread, newest first."""
        ensure_admin(caller)

        thread = await self.db.get(ForumThread, thread_id)
        if not thread:
            raise NotFoundError("Thread not found")

        result = await self.db.execute(
            select(ForumModerationLog)
            .where(ForumModerationLog.thread_id == thread_id)
            .order_by(ForumModerationLog.created_at.desc(), ForumModerationLog.id.desc())
        )
        return list(result.scalars().all())
