"""
Category Service - category management and forum statistics.

Thread counts and last activity are aggregated from forum_threads at read
time, so they cannot drift from the thread table.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from slugify import slugify
from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from forum_service.core.config import settings
from forum_service.core.database import utcnow
from forum_service.core.exceptions import ConflictError, NotFoundError, ValidationError
from forum_service.core.security import Caller
from forum_service.models.forum import ForumCategory, ForumReply, ForumThread
from forum_service.modules.forum.moderation import ensure_admin
from forum_service.modules.forum.validators import require_text


@dataclass
class CategorySummary:
    """Category together with its live thread aggregates."""

    category: ForumCategory
    thread_count: int = 0
    last_activity: datetime | None = None


@dataclass
class ForumStats:
    """Forum-wide totals over live rows."""

    total_categories: int
    total_threads: int
    total_replies: int
    total_views: int
    total_likes: int
    average_replies_per_thread: str


UPDATABLE_FIELDS = ("name", "description", "icon", "color", "is_active", "sort_order")


class CategoryService:
    """
    Service for managing forum categories and aggregate statistics.

    Usage:
        categories = CategoryService(db_session)
        summaries = await categories.list_categories()
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize category service with database session."""
        self.db = db

    def _summary_query(self):
        live = and_(
            ForumThread.category_id == ForumCategory.id,
            ForumThread.is_deleted == False,
        )
        return (
            select(
                ForumCategory,
                func.count(ForumThread.id),
                func.max(ForumThread.updated_at),
            )
            .outerjoin(ForumThread, live)
            .group_by(ForumCategory.id)
        )

    async def list_categories(self, include_inactive: bool = False) -> list[CategorySummary]:
        """Get categories with live thread count and last activity."""
        query = self._summary_query().order_by(ForumCategory.sort_order, ForumCategory.name)
        if not include_inactive:
            query = query.where(ForumCategory.is_active == True)

        result = await self.db.execute(query)
        return [
            CategorySummary(category=cat, thread_count=int(count or 0), last_activity=last)
            for cat, count, last in result.all()
        ]

    async def get_category(self, category_id: int) -> CategorySummary:
        """Get one category with its aggregates."""
        result = await self.db.execute(
            self._summary_query().where(ForumCategory.id == category_id)
        )
        row = result.first()
        if not row:
            raise NotFoundError("Category not found")

        cat, count, last = row
        return CategorySummary(category=cat, thread_count=int(count or 0), last_activity=last)

    async def _unique_slug(self, name: str, exclude_id: int | None = None) -> str:
        base_slug = slugify(name)[:100] or "category"
        slug = base_slug

        counter = 1
        while True:
            query = select(ForumCategory.id).where(ForumCategory.slug == slug)
            if exclude_id is not None:
                query = query.where(ForumCategory.id != exclude_id)
            existing = await self.db.execute(query)
            if existing.first() is None:
                return slug
            slug = f"{base_slug}-{counter}"
            counter += 1

    async def create_category(
        self,
        caller: Caller,
        name: str,
        description: str,
        icon: str | None = None,
        color: str | None = None,
        sort_order: int = 0,
    ) -> CategorySummary:
        """
        Create new forum category.

        Args:
            caller: Acting administrator
            name: Display name (required)
            description: Description (required)
            icon: Icon token, default from settings
            color: Color token, default from settings
            sort_order: Position in listings

        Returns:
            Created category with zeroed aggregates
        """
        ensure_admin(caller)
        name = require_text(name, "Category name")
        description = require_text(description, "Category description")

        category = ForumCategory(
            name=name,
            slug=await self._unique_slug(name),
            description=description,
            icon=(icon or "").strip() or settings.forum_default_category_icon,
            color=(color or "").strip() or settings.forum_default_category_color,
            sort_order=sort_order,
            is_active=True,
        )
        self.db.add(category)
        await self.db.flush()

        logger.info(f"Forum category created: {category.name} ({category.id})")
        return CategorySummary(category=category)

    async def update_category(
        self,
        caller: Caller,
        category_id: int,
        changes: dict[str, Any],
    ) -> CategorySummary:
        """Apply a partial update. Unknown keys are ignored."""
        ensure_admin(caller)

        category = await self.db.get(ForumCategory, category_id)
        if not category:
            raise NotFoundError("Category not found")

        changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}

        if "name" in changes:
            name = require_text(changes["name"], "Category name")
            if name != category.name:
                category.slug = await self._unique_slug(name, exclude_id=category.id)
            category.name = name
        if "description" in changes:
            category.description = require_text(changes["description"], "Category description")
        if "icon" in changes:
            category.icon = require_text(changes["icon"], "Category icon")
        if "color" in changes:
            category.color = require_text(changes["color"], "Category color")
        if "is_active" in changes:
            category.is_active = bool(changes["is_active"])
        if "sort_order" in changes:
            category.sort_order = int(changes["sort_order"])

        category.updated_at = utcnow()
        await self.db.flush()
        return await self.get_category(category.id)

    async def delete_category(self, caller: Caller, category_id: int) -> None:
        """
        Delete a category that has no live threads.

        Soft-deleted threads are detached (category_id set to NULL) so
        their audit rows survive the category.

        Raises:
            ConflictError: category still has live threads
        """
        ensure_admin(caller)

        result = await self.db.execute(
            select(ForumCategory)
            .where(ForumCategory.id == category_id)
            .with_for_update()
        )
        category = result.scalar_one_or_none()
        if not category:
            raise NotFoundError("Category not found")

        live_threads = await self.db.execute(
            select(func.count(ForumThread.id)).where(
                ForumThread.category_id == category_id,
                ForumThread.is_deleted == False,
            )
        )
        if live_threads.scalar_one() > 0:
            raise ConflictError("Category still contains threads")

        await self.db.execute(
            update(ForumThread)
            .where(ForumThread.category_id == category_id)
            .values(category_id=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.delete(category)
        await self.db.flush()

        logger.info(f"Forum category deleted: {category_id}")

    # ==================== Stats ====================

    async def get_stats(self) -> ForumStats:
        """Aggregate totals over active categories and live threads/replies."""
        categories = await self.db.execute(
            select(func.count(ForumCategory.id)).where(ForumCategory.is_active == True)
        )

        threads = await self.db.execute(
            select(
                func.count(ForumThread.id),
                func.coalesce(func.sum(ForumThread.view_count), 0),
                func.coalesce(func.sum(ForumThread.like_count), 0),
            ).where(ForumThread.is_deleted == False)
        )
        total_threads, total_views, thread_likes = threads.one()

        replies = await self.db.execute(
            select(
                func.count(ForumReply.id),
                func.coalesce(func.sum(ForumReply.like_count), 0),
            )
            .join(ForumThread, ForumThread.id == ForumReply.thread_id)
            .where(ForumReply.is_deleted == False, ForumThread.is_deleted == False)
        )
        total_replies, reply_likes = replies.one()

        total_threads = int(total_threads or 0)
        total_replies = int(total_replies or 0)
        decimals = settings.forum_stats_decimals
        average = total_replies / total_threads if total_threads else 0.0

        return ForumStats(
            total_categories=int(categories.scalar_one() or 0),
            total_threads=total_threads,
            total_replies=total_replies,
            total_views=int(total_views or 0),
            total_likes=int(thread_likes or 0) + int(reply_likes or 0),
            average_replies_per_thread=f"{average:.{decimals}f}",
        )
