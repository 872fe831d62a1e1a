# core/ledger.py
import logging
import uuid
from typing import Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mob_maps.core.locks import SpotGuard
from mob_maps.core.projector import VoteCountProjector
from mob_maps.db.models.vote import Vote
from mob_maps.errors import DuplicateVote, VoteNotFound

logger = logging.getLogger(__name__)


class VoteLedger:
    """
    Set of (voter, clip) facts; the source of truth for vote counts.

    Writes only happen inside a spot guard, and each write moves the clip's
    projected ``vote_count`` in the same session.
    """

    def __init__(self, projector: Optional[VoteCountProjector] = None) -> None:
        self.projector = projector or VoteCountProjector()

    async def record_vote(
        self,
        s: AsyncSession,
        guard: SpotGuard,
        *,
        voter_id: uuid.UUID,
        clip_id: uuid.UUID,
        spot_id: uuid.UUID,
    ) -> Tuple[Vote, int]:
        """
        Insert a vote and increment the clip's projection.

        Returns:
            (vote, new vote_count of the clip)

        Raises:
            DuplicateVote: the voter already backs this clip.
            UnguardedLedgerWrite: the spot is not guarded.
        """
        guard.require(spot_id)

        stmt = select(Vote.id).where(Vote.clip_id == clip_id, Vote.voter_id == voter_id)
        if (await s.execute(stmt)).first() is not None:
            raise DuplicateVote(f"voter {voter_id} already voted for clip {clip_id}")

        vote = Vote(clip_id=clip_id, voter_id=voter_id, spot_id=spot_id)
        s.add(vote)
        await s.flush()

        new_count = await self.projector.increment(s, guard, clip_id, spot_id)
        return vote, new_count

    async def remove_vote(self, s: AsyncSession, guard: SpotGuard, vote_id: uuid.UUID) -> Tuple[Vote, int]:
        """
        Delete a vote and decrement the clip's projection.

        Returns:
            (the deleted vote, new vote_count of its clip)

        Raises:
            VoteNotFound: no vote with this id.
            UnguardedLedgerWrite: the vote's spot is not guarded.
        """
        vote = await s.get(Vote, vote_id)
        if vote is None:
            raise VoteNotFound(f"vote {vote_id} does not exist")
        guard.require(vote.spot_id)

        await s.delete(vote)
        # flushed before any insert in the same spot so the
        # (voter_id, spot_id) slot is free again
        await s.flush()

        new_count = await self.projector.decrement(s, guard, vote.clip_id, vote.spot_id)
        return vote, new_count

    async def find_vote_in_spot(self, s: AsyncSession, voter_id: uuid.UUID, spot_id: uuid.UUID) -> Optional[Vote]:
        stmt = select(Vote).where(Vote.voter_id == voter_id, Vote.spot_id == spot_id)
        return (await s.execute(stmt)).scalars().first()

    async def delete_votes_for_clip(self, s: AsyncSession, guard: SpotGuard, clip_id: uuid.UUID, spot_id: uuid.UUID) -> int:
        """
        Bookkeeping for clip removal: drop every vote on the clip.
        The clip is about to disappear, so its projection is left alone.
        """
        guard.require(spot_id)
        result = await s.execute(
            delete(Vote)
            .where(Vote.clip_id == clip_id)
            .execution_options(synchronize_session="fetch")
        )
        removed = int(result.rowcount or 0)
        if removed:
            logger.info("removed %s votes of deleted clip %s", removed, clip_id)
        return removed

    async def delete_votes_for_spot(self, s: AsyncSession, guard: SpotGuard, spot_id: uuid.UUID) -> int:
        guard.require(spot_id)
        result = await s.execute(
            delete(Vote)
            .where(Vote.spot_id == spot_id)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)
