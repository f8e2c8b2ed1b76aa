from forum_service.models.forum import (
    ForumCategory,
    ForumModerationLog,
    ForumReply,
    ForumThread,
    ForumVote,
    VoteTarget,
)

__all__ = [
    "ForumCategory",
    "ForumModerationLog",
    "ForumReply",
    "ForumThread",
    "ForumVote",
    "VoteTarget",
]
