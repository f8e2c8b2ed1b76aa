"""
Forum API Endpoints.

Categories, threads, replies, likes, moderation, search and stats.
Every response uses the envelope ``{"success": bool, "data"?: ..., "error"?: str}``.
"""

from typing import Any, Awaitable, Callable, TypeVar

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from forum_service.core import database
from forum_service.core.security import Caller, get_optional_caller, require_caller
from forum_service.models.forum import (
    ForumModerationLog,
    ForumReply,
    ForumThread,
    VoteTarget,
)
from forum_service.modules.forum import ForumService, ThreadFilter
from forum_service.modules.forum.categories import CategorySummary, ForumStats
from forum_service.modules.forum.moderation import ensure_admin
from forum_service.modules.forum.validators import Page
from forum_service.modules.forum.votes import VoteResult

router = APIRouter()

T = TypeVar("T")


async def _run(work: Callable[[ForumService], Awaitable[T]]) -> T:
    """
    Run one request's work in its own transaction.

    Endpoints take no ``Depends(get_db)`` session: a retried transaction
    needs a fresh session, so the session is opened here per attempt and
    handed to ``work`` through ``ForumService``.
    """

    async def unit(db: AsyncSession) -> T:
        return await work(ForumService(db))

    return await database.run_in_transaction(unit)


def _ok(data: Any = None) -> dict[str, Any]:
    if data is None:
        return {"success": True}
    return {"success": True, "data": data}


# ==================== Schemas ====================


class CamelModel(BaseModel):
    """Request body accepting camelCase or snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateCategoryRequest(CamelModel):
    """Create new category."""

    name: str
    description: str
    icon: str | None = None
    color: str | None = None
    sort_order: int = 0


class UpdateCategoryRequest(CamelModel):
    """Partial category update."""

    name: str | None = None
    description: str | None = None
    icon: str | None = None
    color: str | None = None
    is_active: bool | None = None
    sort_order: int | None = None


class CreateThreadRequest(CamelModel):
    """Create new thread."""

    category_id: int
    title: str
    content: str
    tags: list[str] = []


class UpdateThreadRequest(CamelModel):
    """Edit thread; only sent fields change."""

    title: str | None = None
    content: str | None = None
    category_id: int | None = None
    tags: list[str] | None = None


class ModerateRequest(CamelModel):
    """Moderator action on a thread."""

    action: str
    reason: str | None = None


class ReplyRequest(CamelModel):
    """Create or edit a reply."""

    content: str


# ==================== Mappers ====================


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _category_to_dict(summary: CategorySummary) -> dict[str, Any]:
    cat = summary.category
    return {
        "id": cat.id,
        "name": cat.name,
        "slug": cat.slug,
        "description": cat.description,
        "icon": cat.icon,
        "color": cat.color,
        "isActive": cat.is_active,
        "sortOrder": cat.sort_order,
        "threadCount": summary.thread_count,
        "lastActivity": _iso(summary.last_activity),
        "createdAt": _iso(cat.created_at),
        "updatedAt": _iso(cat.updated_at),
    }


def _thread_to_dict(t: ForumThread, liked: bool | None = None) -> dict[str, Any]:
    data = {
        "id": t.id,
        "categoryId": t.category_id,
        "title": t.title,
        "content": t.content,
        "authorId": t.author_id,
        "tags": list(t.tags or []),
        "views": t.view_count,
        "replies": t.reply_count,
        "likes": t.like_count,
        "isPinned": t.is_pinned,
        "isLocked": t.is_locked,
        "isDeleted": t.is_deleted,
        "createdAt": _iso(t.created_at),
        "updatedAt": _iso(t.updated_at),
    }
    if t.moderated_at:
        data["moderatedAt"] = _iso(t.moderated_at)
        data["moderatedBy"] = t.moderated_by
        data["moderationReason"] = t.moderation_reason
    if liked is not None:
        data["liked"] = liked
    return data


def _reply_to_dict(r: ForumReply, thread_replies: int | None = None) -> dict[str, Any]:
    data = {
        "id": r.id,
        "threadId": r.thread_id,
        "content": r.content,
        "authorId": r.author_id,
        "likes": r.like_count,
        "isEdited": r.is_edited,
        "isDeleted": r.is_deleted,
        "createdAt": _iso(r.created_at),
        "updatedAt": _iso(r.updated_at),
    }
    if thread_replies is not None:
        data["threadReplies"] = thread_replies
    return data


def _page_to_dict(page: Page, key: str, mapper: Callable[[Any], dict]) -> dict[str, Any]:
    return {
        key: [mapper(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "totalPages": page.total_pages,
    }


def _vote_to_dict(result: VoteResult) -> dict[str, Any]:
    return {"liked": result.liked, "likeCount": result.like_count}


def _log_to_dict(entry: ForumModerationLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "threadId": entry.thread_id,
        "moderatorId": entry.moderator_id,
        "action": entry.action,
        "reason": entry.reason,
        "createdAt": _iso(entry.created_at),
    }


def _stats_to_dict(stats: ForumStats) -> dict[str, Any]:
    return {
        "totalCategories": stats.total_categories,
        "totalThreads": stats.total_threads,
        "totalReplies": stats.total_replies,
        "totalViews": stats.total_views,
        "totalLikes": stats.total_likes,
        "averageRepliesPerThread": stats.average_replies_per_thread,
    }


# ==================== Categories ====================


@router.get("/categories")
async def get_categories(
    include_inactive: bool = Query(False, alias="includeInactive"),
    caller: Caller | None = Depends(get_optional_caller),
) -> dict[str, Any]:
    """Get forum categories. Inactive ones are visible to admins only."""
    show_inactive = include_inactive and caller is not None and caller.is_admin

    async def work(forum: ForumService):
        return await forum.categories.list_categories(include_inactive=show_inactive)

    categories = await _run(work)
    return _ok([_category_to_dict(c) for c in categories])


@router.get("/categories/{category_id}")
async def get_category(category_id: int) -> dict[str, Any]:
    """Get category details."""
    summary = await _run(lambda forum: forum.categories.get_category(category_id))
    return _ok(_category_to_dict(summary))


@router.post("/categories", status_code=201)
async def create_category(
    request: CreateCategoryRequest,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Create new category (admin)."""
    summary = await _run(
        lambda forum: forum.categories.create_category(
            caller,
            name=request.name,
            description=request.description,
            icon=request.icon,
            color=request.color,
            sort_order=request.sort_order,
        )
    )
    return _ok(_category_to_dict(summary))


@router.put("/categories/{category_id}")
async def update_category(
    category_id: int,
    request: UpdateCategoryRequest,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Partially update a category (admin)."""
    changes = request.model_dump(exclude_unset=True)
    summary = await _run(
        lambda forum: forum.categories.update_category(caller, category_id, changes)
    )
    return _ok(_category_to_dict(summary))


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: int,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Delete an empty category (admin)."""
    await _run(lambda forum: forum.categories.delete_category(caller, category_id))
    return _ok()


# ==================== Threads ====================


@router.get("/threads")
async def get_threads(
    category_id: int | None = Query(None, alias="categoryId"),
    author_id: str | None = Query(None, alias="authorId"),
    pinned: bool | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    sort_by: str | None = Query(None, alias="sortBy"),
) -> dict[str, Any]:
    """Get threads with filtering, sorting and pagination."""
    filters = ThreadFilter(category_id=category_id, author_id=author_id, pinned=pinned)
    result = await _run(
        lambda forum: forum.threads.list_threads(
            filters, page=page, limit=limit, sort_by=sort_by
        )
    )
    return _ok(_page_to_dict(result, "threads", _thread_to_dict))


@router.get("/threads/{thread_id}")
async def get_thread(
    thread_id: int,
    increment_view: bool = Query(False, alias="incrementView"),
    caller: Caller | None = Depends(get_optional_caller),
) -> dict[str, Any]:
    """Get thread details, optionally counting a view."""

    async def work(forum: ForumService):
        thread = await forum.threads.get_thread(thread_id, increment_view=increment_view)
        liked = None
        if caller is not None:
            liked = await forum.votes.has_voted(caller.user_id, VoteTarget.THREAD, thread_id)
        return _thread_to_dict(thread, liked=liked)

    return _ok(await _run(work))


@router.post("/threads", status_code=201)
async def create_thread(
    request: CreateThreadRequest,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Create new thread."""
    thread = await _run(
        lambda forum: forum.threads.create_thread(
            author_id=caller.user_id,
            category_id=request.category_id,
            title=request.title,
            content=request.content,
            tags=request.tags,
        )
    )
    return _ok(_thread_to_dict(thread))


@router.put("/threads/{thread_id}")
async def update_thread(
    thread_id: int,
    request: UpdateThreadRequest,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Edit thread (author)."""
    thread = await _run(
        lambda forum: forum.threads.update_thread(
            thread_id,
            caller,
            title=request.title,
            content=request.content,
            category_id=request.category_id,
            tags=request.tags,
        )
    )
    return _ok(_thread_to_dict(thread))


@router.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: int,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Delete thread (author or admin)."""
    thread = await _run(lambda forum: forum.threads.delete_thread(thread_id, caller))
    return _ok(_thread_to_dict(thread))


@router.post("/threads/{thread_id}/moderate")
async def moderate_thread(
    thread_id: int,
    request: ModerateRequest,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Pin, unpin, lock, unlock or delete a thread (admin)."""
    thread = await _run(
        lambda forum: forum.moderation.moderate(
            thread_id, request.action, caller, reason=request.reason
        )
    )
    return _ok(_thread_to_dict(thread))


@router.get("/threads/{thread_id}/moderation")
async def get_moderation_history(
    thread_id: int,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Get moderation log of a thread (admin)."""
    entries = await _run(lambda forum: forum.moderation.get_history(thread_id, caller))
    return _ok([_log_to_dict(e) for e in entries])


# ==================== Replies ====================


@router.get("/threads/{thread_id}/replies")
async def get_replies(
    thread_id: int,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
) -> dict[str, Any]:
    """Get replies in thread, oldest first."""
    result = await _run(
        lambda forum: forum.threads.list_replies(thread_id, page=page, limit=limit)
    )
    return _ok(_page_to_dict(result, "replies", _reply_to_dict))


@router.post("/threads/{thread_id}/replies", status_code=201)
async def create_reply(
    thread_id: int,
    request: ReplyRequest,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Create new reply in thread."""

    async def work(forum: ForumService):
        reply = await forum.threads.create_reply(thread_id, caller.user_id, request.content)
        thread = await forum.threads.get_thread(thread_id)
        return _reply_to_dict(reply, thread_replies=thread.reply_count)

    return _ok(await _run(work))


@router.put("/replies/{reply_id}")
async def update_reply(
    reply_id: int,
    request: ReplyRequest,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Edit reply (author)."""
    reply = await _run(
        lambda forum: forum.threads.update_reply(reply_id, caller, request.content)
    )
    return _ok(_reply_to_dict(reply))


@router.delete("/replies/{reply_id}")
async def delete_reply(
    reply_id: int,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Delete reply (reply author, thread author or admin)."""

    async def work(forum: ForumService):
        reply = await forum.threads.delete_reply(reply_id, caller)
        thread = await forum.db.get(ForumThread, reply.thread_id, populate_existing=True)
        return _reply_to_dict(reply, thread_replies=thread.reply_count if thread else None)

    return _ok(await _run(work))


# ==================== Reactions ====================


@router.post("/threads/{thread_id}/like")
async def like_thread(
    thread_id: int,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Toggle like on a thread."""
    result = await _run(
        lambda forum: forum.votes.toggle(caller.user_id, VoteTarget.THREAD, thread_id)
    )
    return _ok(_vote_to_dict(result))


@router.post("/replies/{reply_id}/like")
async def like_reply(
    reply_id: int,
    caller: Caller = Depends(require_caller),
) -> dict[str, Any]:
    """Toggle like on a reply."""
    result = await _run(
        lambda forum: forum.votes.toggle(caller.user_id, VoteTarget.REPLY, reply_id)
    )
    return _ok(_vote_to_dict(result))


# ==================== Search & Stats ====================


@router.get("/search")
async def search_threads(
    q: str = Query(""),
    limit: int | None = Query(None, ge=1),
    category_id: int | None = Query(None, alias="categoryId"),
) -> dict[str, Any]:
    """Search thread titles and content."""
    threads = await _run(
        lambda forum: forum.threads.search(q, limit=limit, category_id=category_id)
    )
    return _ok([_thread_to_dict(t) for t in threads])


@router.get("/stats")
async def get_stats(caller: Caller = Depends(require_caller)) -> dict[str, Any]:
    """Get forum statistics (admin)."""
    ensure_admin(caller)
    stats = await _run(lambda forum: forum.categories.get_stats())
    return _ok(_stats_to_dict(stats))
