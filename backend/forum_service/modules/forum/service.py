"""
Forum Service - single entry point over the forum sub-services.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from forum_service.modules.forum.categories import CategoryService
from forum_service.modules.forum.moderation import ModerationService
from forum_service.modules.forum.threads import ThreadService
from forum_service.modules.forum.votes import VoteLedger


class ForumService:
    """
    Service for managing forum categories, threads, replies, votes and
    moderation within one database session.

    Usage:
        forum = ForumService(db_session)
        page = await forum.threads.list_threads(page=2)
        result = await forum.votes.toggle(user_id, "reply", 17)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize forum service with database session."""
        self.db = db
        self.categories = CategoryService(db)
        self.threads = ThreadService(db)
        self.votes = VoteLedger(db)
        self.moderation = ModerationService(db)
