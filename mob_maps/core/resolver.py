# core/resolver.py
import logging
import uuid
from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mob_maps.core.locks import SpotGuard
from mob_maps.db.models.clip import Clip
from mob_maps.db.models.spot import Spot
from mob_maps.errors import InvalidSpot

logger = logging.getLogger(__name__)

# vote_count desc, created_at asc, id asc
RANKING = (Clip.vote_count.desc(), Clip.created_at.asc(), Clip.id.asc())


def rank_key(clip: Any) -> tuple:
    return (-int(clip.vote_count or 0), clip.created_at, clip.id)


def rank_clips(clips: Iterable[Any]) -> List[Any]:
    """Order clips (ORM rows or DTOs) the way the resolver ranks them."""
    return sorted(clips, key=rank_key)


def expected_owner(clips: Sequence[Any]) -> Optional[uuid.UUID]:
    if not clips:
        return None
    return rank_clips(clips)[0].user_id


class OwnershipResolver:
    """Recomputes ``spots.owner_id``; the only code that writes it."""

    async def recalc_owner(self, s: AsyncSession, guard: SpotGuard, spot_id: uuid.UUID) -> Optional[uuid.UUID]:
        """
        Point the spot at the uploader of its top-ranked clip, or None without clips.

        Idempotent. Raises InvalidSpot for unknown spots.
        """
        guard.require(spot_id)

        current = (await s.execute(select(Spot.owner_id).where(Spot.id == spot_id))).first()
        if current is None:
            raise InvalidSpot(f"spot {spot_id} does not exist")
        previous_owner = current[0]

        stmt = select(Clip.user_id).where(Clip.spot_id == spot_id).order_by(*RANKING).limit(1)
        owner_id = (await s.execute(stmt)).scalar_one_or_none()

        if owner_id == previous_owner:
            logger.debug("spot %s owner unchanged (%s)", spot_id, owner_id)
            return owner_id

        await s.execute(
            update(Spot)
            .where(Spot.id == spot_id)
            .values(owner_id=owner_id)
            .execution_options(synchronize_session="fetch")
        )
        logger.info("spot %s owner %s -> %s", spot_id, previous_owner, owner_id)
        return owner_id
