"""
Forum Module - Community discussions.

Features:
- Categories with live thread statistics
- Threads and replies with soft delete
- Like toggling (one vote per user and target)
- Moderation tools (pin, lock, delete)
- Substring search
"""

from forum_service.modules.forum.moderation import ModerationAction
from forum_service.modules.forum.service import ForumService
from forum_service.modules.forum.threads import SortKey, ThreadFilter

__all__ = ["ForumService", "ModerationAction", "SortKey", "ThreadFilter"]
