"""
Vote Ledger - like toggling on threads and replies.

A voter holds at most one vote per target; voting again removes it. The
target row is locked for the duration of the toggle so concurrent toggles
on the same target serialize, and the unique constraint on forum_votes
turns any remaining race into an IntegrityError that the transaction
runner retries.
"""

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from forum_service.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from forum_service.models.forum import ForumReply, ForumThread, ForumVote, VoteTarget
from forum_service.modules.forum.moderation import ensure_writable


@dataclass
class VoteResult:
    """Outcome of a toggle: whether the voter now likes the target."""

    liked: bool
    like_count: int


def _parse_target(target_type: str | VoteTarget) -> VoteTarget:
    try:
        return VoteTarget(target_type)
    except ValueError:
        raise ValidationError("Vote target must be 'thread' or 'reply'") from None


class VoteLedger:
    """
    Service for likes on threads and replies.

    Usage:
        votes = VoteLedger(db_session)
        result = await votes.toggle("user-7", "thread", 42)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize vote ledger with database session."""
        self.db = db

    async def _lock_target(
        self, target: VoteTarget, target_id: int
    ) -> tuple[ForumThread | ForumReply, ForumThread | None]:
        """Lock the target row and load the thread that owns it."""
        model = ForumThread if target is VoteTarget.THREAD else ForumReply
        result = await self.db.execute(
            select(model)
            .where(model.id == target_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        entity = result.scalar_one_or_none()
        if not entity or entity.is_deleted:
            raise NotFoundError(f"{target.value.capitalize()} not found")

        if target is VoteTarget.THREAD:
            return entity, entity
        return entity, await self.db.get(ForumThread, entity.thread_id)

    async def toggle(
        self,
        voter_id: str,
        target_type: str | VoteTarget,
        target_id: int,
    ) -> VoteResult:
        """
        Like the target, or remove an existing like.

        Args:
            voter_id: Voting user ID
            target_type: "thread" or "reply"
            target_id: Thread or reply ID

        Returns:
            The voter's resulting state and the stored like count

        Raises:
            NotFoundError: target missing or deleted
            ForbiddenError: voter authored the target
            LockedError: owning thread is locked or deleted
        """
        target = _parse_target(target_type)
        entity, thread = await self._lock_target(target, target_id)

        if entity.author_id == voter_id:
            raise ForbiddenError("You cannot like your own post")
        if thread is None:
            raise NotFoundError("Thread not found")
        ensure_writable(thread)

        model = type(entity)
        existing = await self.db.execute(
            select(ForumVote.id).where(
                ForumVote.voter_id == voter_id,
                ForumVote.target_type == target.value,
                ForumVote.target_id == target_id,
            )
        )
        vote_id = existing.scalar_one_or_none()

        if vote_id is not None:
            await self.db.execute(delete(ForumVote).where(ForumVote.id == vote_id))
            new_count = case((model.like_count > 0, model.like_count - 1), else_=0)
            liked = False
        else:
            self.db.add(
                ForumVote(
                    voter_id=voter_id,
                    target_type=target.value,
                    target_id=target_id,
                )
            )
            await self.db.flush()
            new_count = model.like_count + 1
            liked = True

        await self.db.execute(
            update(model)
            .where(model.id == target_id)
            .values(like_count=new_count)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(entity, attribute_names=["like_count"])

        logger.debug(
            f"Vote toggled: {voter_id} {'liked' if liked else 'unliked'} "
            f"{target.value} {target_id} (count={entity.like_count})"
        )
        return VoteResult(liked=liked, like_count=entity.like_count)

    async def has_voted(
        self,
        voter_id: str,
        target_type: str | VoteTarget,
        target_id: int,
    ) -> bool:
        """Check whether the voter currently likes the target."""
        target = _parse_target(target_type)
        result = await self.db.execute(
            select(ForumVote.id).where(
                ForumVote.voter_id == voter_id,
                ForumVote.target_type == target.value,
                ForumVote.target_id == target_id,
            )
        )
        return result.first() is not None

    async def count(self, target_type: str | VoteTarget, target_id: int) -> int:
        """Count vote rows for a target."""
        target = _parse_target(target_type)
        result = await self.db.execute(
            select(func.count(ForumVote.id)).where(
                ForumVote.target_type == target.value,
                ForumVote.target_id == target_id,
            )
        )
        return int(result.scalar_one() or 0)
