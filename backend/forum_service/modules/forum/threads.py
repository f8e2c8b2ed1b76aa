"""
Thread Service - threads, replies and search.

Counters on forum_threads (views, replies) only change through single
UPDATE statements of the form ``col = col + 1`` inside the request
transaction, so concurrent writers never lose an increment.
"""

from dataclasses import dataclass
from enum import Enum

from loguru import logger
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from forum_service.core.config import settings
from forum_service.core.database import utcnow
from forum_service.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from forum_service.core.security import Caller
from forum_service.models.forum import ForumCategory, ForumReply, ForumThread
from forum_service.modules.forum.moderation import ensure_writable, soft_delete_thread
from forum_service.modules.forum.validators import (
    Page,
    check_page,
    normalize_tags,
    require_text,
)


class SortKey(str, Enum):
    """Allowed thread orderings (all descending)."""

    UPDATED_AT = "updatedAt"
    CREATED_AT = "createdAt"
    REPLIES = "replies"
    VIEWS = "views"
    LIKES = "likes"

    @classmethod
    def parse(cls, value: str | None) -> "SortKey":
        if not value:
            return cls.UPDATED_AT
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(k.value for k in cls)
            raise ValidationError(f"Unknown sortBy (expected one of: {allowed})") from None

    @property
    def column(self):
        return {
            SortKey.UPDATED_AT: ForumThread.updated_at,
            SortKey.CREATED_AT: ForumThread.created_at,
            SortKey.REPLIES: ForumThread.reply_count,
            SortKey.VIEWS: ForumThread.view_count,
            SortKey.LIKES: ForumThread.like_count,
        }[self]


@dataclass
class ThreadFilter:
    """Optional listing filters."""

    category_id: int | None = None
    author_id: str | None = None
    pinned: bool | None = None


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ThreadService:
    """
    Service for threads, replies and thread search.

    Usage:
        threads = ThreadService(db_session)
        page = await threads.list_threads(ThreadFilter(category_id=3))
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize thread service with database session."""
        self.db = db

    # ==================== Lookups ====================

    async def _load_thread(self, thread_id: int, for_update: bool = False) -> ForumThread:
        """Load a live thread, optionally locking its row."""
        query = (
            select(ForumThread)
            .where(ForumThread.id == thread_id, ForumThread.is_deleted == False)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        thread = result.scalar_one_or_none()
        if not thread:
            raise NotFoundError("Thread not found")
        return thread

    async def _load_reply(self, reply_id: int, for_update: bool = False) -> ForumReply:
        query = (
            select(ForumReply)
            .where(ForumReply.id == reply_id, ForumReply.is_deleted == False)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        reply = result.scalar_one_or_none()
        if not reply:
            raise NotFoundError("Reply not found")
        return reply

    async def _require_active_category(self, category_id: int) -> ForumCategory:
        category = await self.db.get(ForumCategory, category_id)
        if not category:
            raise NotFoundError("Category not found")
        if not category.is_active:
            raise ValidationError("Category is not active")
        return category

    # ==================== Threads ====================

    async def create_thread(
        self,
        author_id: str,
        category_id: int,
        title: str,
        content: str,
        tags: list[str] | None = None,
    ) -> ForumThread:
        """
        Create new forum thread.

        Args:
            author_id: Author user ID
            category_id: Active category ID
            title: Thread title
            content: Opening post (plain text)
            tags: Ordered tag list

        Returns:
            Created thread
        """
        title = require_text(title, "Title")
        content = require_text(content, "Content")
        tags = normalize_tags(tags)
        await self._require_active_category(category_id)

        now = utcnow()
        thread = ForumThread(
            category_id=category_id,
            author_id=author_id,
            title=title,
            content=content,
            tags=tags,
            view_count=0,
            reply_count=0,
            like_count=0,
            is_pinned=False,
            is_locked=False,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(thread)
        await self.db.flush()

        logger.info(f"Thread created: {thread.id} in category {category_id} by {author_id}")
        return thread

    async def get_thread(self, thread_id: int, increment_view: bool = False) -> ForumThread:
        """
        Get a live thread.

        With ``increment_view`` the view counter is bumped once, atomically,
        before the read. Deduplication is the caller's concern.
        """
        if increment_view:
            result = await self.db.execute(
                update(ForumThread)
                .where(ForumThread.id == thread_id, ForumThread.is_deleted == False)
                .values(view_count=ForumThread.view_count + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError("Thread not found")

        return await self._load_thread(thread_id)

    async def list_threads(
        self,
        filters: ThreadFilter | None = None,
        page: int = 1,
        limit: int | None = None,
        sort_by: str | SortKey | None = None,
        pinned_first: bool = True,
    ) -> Page[ForumThread]:
        """
        Get live threads with filtering, sorting and pagination.

        Pinned threads come first, then the sort key descending, then newest
        id. A page past the end is empty rather than an error.
        """
        filters = filters or ThreadFilter()
        if limit is None:
            limit = settings.forum_threads_per_page
        check_page(page, limit)
        sort_key = sort_by if isinstance(sort_by, SortKey) else SortKey.parse(sort_by)

        conditions = [ForumThread.is_deleted == False]
        if filters.category_id is not None:
            conditions.append(ForumThread.category_id == filters.category_id)
        if filters.author_id:
            conditions.append(ForumThread.author_id == filters.author_id)
        if filters.pinned is not None:
            conditions.append(ForumThread.is_pinned == filters.pinned)

        total = await self.db.execute(select(func.count(ForumThread.id)).where(*conditions))
        result_page: Page[ForumThread] = Page(
            items=[], total=int(total.scalar_one() or 0), page=page, limit=limit
        )

        order_by = [sort_key.column.desc(), ForumThread.id.desc()]
        if pinned_first:
            order_by.insert(0, ForumThread.is_pinned.desc())

        result = await self.db.execute(
            select(ForumThread)
            .where(*conditions)
            .order_by(*order_by)
            .limit(limit)
            .offset(result_page.offset)
        )
        result_page.items = list(result.scalars().all())
        return result_page

    async def update_thread(
        self,
        thread_id: int,
        caller: Caller,
        title: str | None = None,
        content: str | None = None,
        category_id: int | None = None,
        tags: list[str] | None = None,
    ) -> ForumThread:
        """Edit a thread. Author only; blocked while the thread is locked."""
        thread = await self._load_thread(thread_id, for_update=True)

        if thread.author_id != caller.user_id:
            raise ForbiddenError("Only the author can edit this thread")
        ensure_writable(thread)

        if title is not None:
            thread.title = require_text(title, "Title")
        if content is not None:
            thread.content = require_text(content, "Content")
        if tags is not None:
            thread.tags = normalize_tags(tags)
        if category_id is not None and category_id != thread.category_id:
            await self._require_active_category(category_id)
            thread.category_id = category_id

        thread.updated_at = utcnow()
        await self.db.flush()
        return thread

    async def delete_thread(self, thread_id: int, caller: Caller) -> ForumThread:
        """
        Soft-delete a thread. Author or admin; allowed on locked threads.

        Reply rows are kept for audit and become unreachable with the thread.
        """
        thread = await self._load_thread(thread_id, for_update=True)

        if not (caller.is_admin or thread.author_id == caller.user_id):
            raise ForbiddenError("Only the author or an admin can delete this thread")

        soft_delete_thread(thread, caller.user_id)
        await self.db.flush()

        logger.info(f"Thread deleted: {thread.id} by {caller.user_id}")
        return thread

    # ==================== Replies ====================

    async def create_reply(self, thread_id: int, author_id: str, content: str) -> ForumReply:
        """
        Add a reply to a thread.

        The reply insert, the reply counter bump and the thread's activity
        timestamp commit together.

        Raises:
            NotFoundError: thread does not exist
            LockedError: thread is locked or deleted
        """
        content = require_text(content, "Reply content")

        result = await self.db.execute(
            select(ForumThread)
            .where(ForumThread.id == thread_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        thread = result.scalar_one_or_none()
        if not thread:
            raise NotFoundError("Thread not found")
        ensure_writable(thread)

        now = utcnow()
        reply = ForumReply(
            thread_id=thread_id,
            author_id=author_id,
            content=content,
            like_count=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(reply)
        await self.db.flush()

        await self.db.execute(
            update(ForumThread)
            .where(ForumThread.id == thread_id)
            .values(reply_count=ForumThread.reply_count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return reply

    async def update_reply(self, reply_id: int, caller: Caller, content: str) -> ForumReply:
        """Edit a reply. Author only; blocked while the thread is locked."""
        reply = await self._load_reply(reply_id)

        if reply.author_id != caller.user_id:
            raise ForbiddenError("Only the author can edit this reply")

        thread = await self.db.get(ForumThread, reply.thread_id)
        if not thread:
            raise NotFoundError("Thread not found")
        ensure_writable(thread)

        reply.content = require_text(content, "Reply content")
        reply.is_edited = True
        reply.updated_at = utcnow()
        await self.db.flush()
        return reply

    async def delete_reply(self, reply_id: int, caller: Caller) -> ForumReply:
        """
        Soft-delete a reply.

        Allowed for the reply author, the thread author and admins. The
        thread's reply counter drops by one (never below zero); its
        activity timestamp is left as is.

        The soft delete is conditional on the reply still being live, so of
        two concurrent deletes only one decrements the counter and the
        other gets NotFoundError.
        """
        reply = await self._load_reply(reply_id, for_update=True)
        thread = await self.db.get(ForumThread, reply.thread_id)

        allowed = (
            caller.is_admin
            or reply.author_id == caller.user_id
            or (thread is not None and thread.author_id == caller.user_id)
        )
        if not allowed:
            raise ForbiddenError("Not allowed to delete this reply")

        result = await self.db.execute(
            update(ForumReply)
            .where(ForumReply.id == reply_id, ForumReply.is_deleted == False)
            .values(is_deleted=True, deleted_at=utcnow(), deleted_by=caller.user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Reply not found")
        await self.db.refresh(reply)

        await self.db.execute(
            update(ForumThread)
            .where(ForumThread.id == reply.thread_id)
            .values(
                reply_count=case(
                    (ForumThread.reply_count > 0, ForumThread.reply_count - 1),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )

        logger.info(f"Reply deleted: {reply.id} in thread {reply.thread_id} by {caller.user_id}")
        return reply

    async def list_replies(
        self,
        thread_id: int,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[ForumReply]:
        """Get live replies of a live thread, oldest first."""
        if limit is None:
            limit = settings.forum_replies_per_page
        check_page(page, limit)
        await self._load_thread(thread_id)

        conditions = [ForumReply.thread_id == thread_id, ForumReply.is_deleted == False]
        total = await self.db.execute(select(func.count(ForumReply.id)).where(*conditions))
        result_page: Page[ForumReply] = Page(
            items=[], total=int(total.scalar_one() or 0), page=page, limit=limit
        )

        result = await self.db.execute(
            select(ForumReply)
            .where(*conditions)
            .order_by(ForumReply.created_at.asc(), ForumReply.id.asc())
            .limit(limit)
            .offset(result_page.offset)
        )
        result_page.items = list(result.scalars().all())
        return result_page

    # ==================== Search ====================

    async def search(
        self,
        query: str,
        limit: int | None = None,
        category_id: int | None = None,
    ) -> list[ForumThread]:
        """
        Case-insensitive substring search over live thread titles and content.

        Args:
            query: Search term (required)
            limit: Max results, capped by settings
            category_id: Optional category restriction

        Returns:
            Matching threads, most recently updated first
        """
        term = require_text(query, "Search query")
        if limit is None:
            limit = settings.forum_search_default_limit
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        limit = min(limit, settings.forum_search_max_limit)

        pattern = f"%{_escape_like(term)}%"
        stmt = select(ForumThread).where(
            ForumThread.is_deleted == False,
            or_(
                ForumThread.title.ilike(pattern, escape="\\"),
                ForumThread.content.ilike(pattern, escape="\\"),
            ),
        )
        if category_id is not None:
            stmt = stmt.where(ForumThread.category_id == category_id)

        stmt = stmt.order_by(ForumThread.updated_at.desc(), ForumThread.id.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
