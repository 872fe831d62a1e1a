# core/projector.py
import logging
import uuid
from typing import Dict, Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mob_maps.core.locks import SpotGuard
from mob_maps.db.models.clip import Clip
from mob_maps.db.models.vote import Vote

logger = logging.getLogger(__name__)


class VoteCountProjector:
	"""
	Keeps ``clips.vote_count`` in step with the vote ledger.

	Every method runs inside the caller's session, so the projection commits
	or rolls back together with the ledger mutation that triggered it.
	"""

	async def increment(self, s: AsyncSession, guard: SpotGuard, clip_id: uuid.UUID, spot_id: uuid.UUID) -> int:
		guard.require(spot_id)
		stmt = (
			update(Clip)
			.where(Clip.id == clip_id)
			.values(vote_count=func.coalesce(Clip.vote_count, 0) + 1)
			.execution_options(synchronize_session="fetch")
		)
		await s.execute(stmt)
		return await self.current(s, clip_id)

	async def decrement(self, s: AsyncSession, guard: SpotGuard, clip_id: uuid.UUID, spot_id: uuid.UUID) -> int:
		"""Decrement, flooring at zero so a drifted projection never goes negative."""
		guard.require(spot_id)
		stmt = (
			update(Clip)
			.where(Clip.id == clip_id)
			.values(vote_count=case((Clip.vote_count > 0, Clip.vote_count - 1), else_=0))
			.execution_options(synchronize_session="fetch")
		)
		await s.execute(stmt)
		return await self.current(s, clip_id)

	async def current(self, s: AsyncSession, clip_id: uuid.UUID) -> int:
		stmt = select(Clip.vote_count).where(Clip.id == clip_id)
		value: Optional[int] = (await s.execute(stmt)).scalar_one_or_none()
		return int(value or 0)

	async def count_from_ledger(self, s: AsyncSession, clip_ids: Optional[Iterable[uuid.UUID]] = None) -> Dict[uuid.UUID, int]:
		"""
		Authoritative counts computed from the ledger.
		Clips without votes are included with 0.
		"""
		clips_stmt = select(Clip.id)
		if clip_ids is not None:
			clips_stmt = clips_stmt.where(Clip.id.in_(list(clip_ids)))
		counts: Dict[uuid.UUID, int] = {cid: 0 for cid in (await s.execute(clips_stmt)).scalars().all()}
		if not counts:
			return counts

		votes_stmt = (
			select(Vote.clip_id, func.count(Vote.id))
			.where(Vote.clip_id.in_(list(counts)))
			.group_by(Vote.clip_id)
		)
		for clip_id, total in (await s.execute(votes_stmt)).all():
			counts[clip_id] = int(total)
		return counts

	async def overwrite(self, s: AsyncSession, guard: SpotGuard, clip_id: uuid.UUID, spot_id: uuid.UUID, value: int) -> None:
		guard.require(spot_id)
		await s.execute(
			update(Clip)
			.where(Clip.id == clip_id)
			.values(vote_count=max(0, int(value)))
			.execution_options(synchronize_session="fetch")
		)
		logger.info("clip %s vote_count reset to %s", clip_id, value)
