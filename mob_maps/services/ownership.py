# services/ownership.py
import logging
from uuid import UUID
from typing import ClassVar, List, Optional, Self

from sqlalchemy import select

from mob_maps.core.projector import VoteCountProjector
from mob_maps.core.resolver import OwnershipResolver, expected_owner
from mob_maps.core.unit_of_work import territory_work
from mob_maps.db.database import DataBase
from mob_maps.db.models.clip import Clip
from mob_maps.db.models.spot import Spot
from mob_maps.db.schemas.diagnostics import OwnershipCheck
from mob_maps.services.audit_log import instrument_service_class

logger = logging.getLogger(__name__)


class OwnershipService:
    """
    Repair and diagnostics around spot ownership.

    Nothing here is on the voting hot path: these are the operations a
    maintenance job runs after imports, manual fixes or suspected drift.
    """
    _instance: ClassVar[Optional["OwnershipService"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self.database = DataBase()
        self._resolver = OwnershipResolver()
        self._projector = VoteCountProjector()
        self._initialized = True

    async def recalc_owner(self, spot_id: UUID) -> Optional[UUID]:
        """Recompute one spot's owner. Raises InvalidSpot for unknown spots."""
        async with territory_work(spot_id) as work:
            return await self._resolver.recalc_owner(work.session, work.guard, spot_id)

    async def recalc_all_owners(self) -> int:
        """
        Backfill: ``recalc_owner`` for every spot that has at least one clip.
        Each spot gets its own unit of work. Returns the number of spots processed.
        """
        spot_ids = await self.database.list_spot_ids_with_clips()
        for spot_id in spot_ids:
            await self.recalc_owner(spot_id)
        logger.info("recalculated owners of %s spots", len(spot_ids))
        return len(spot_ids)

    async def reconcile_vote_counts(self) -> int:
        """
        Recount every clip's vote_count from the ledger, fix the drifted ones
        and recompute the owners of their spots. Returns the number of clips fixed.
        """
        fixed = 0
        for spot_id in await self.database.list_spot_ids_with_clips():
            async with territory_work(spot_id) as work:
                s = work.session
                rows = (await s.execute(select(Clip.id, Clip.vote_count).where(Clip.spot_id == spot_id))).all()
                actual = await self._projector.count_from_ledger(s, [clip_id for clip_id, _ in rows])

                drifted = [(clip_id, stored) for clip_id, stored in rows if actual.get(clip_id, 0) != stored]
                for clip_id, stored in drifted:
                    logger.warning("clip %s vote_count drifted: stored %s, ledger %s", clip_id, stored, actual[clip_id])
                    await self._projector.overwrite(s, work.guard, clip_id, spot_id, actual[clip_id])

                if drifted:
                    await self._resolver.recalc_owner(s, work.guard, spot_id)
                fixed += len(drifted)

        return fixed

    async def verify_ownership(self) -> List[OwnershipCheck]:
        """Compare stored owners with the ranking over current clips, without writing."""
        async with self.database.session() as s:
            spots = (await s.execute(select(Spot.id, Spot.owner_id).order_by(Spot.created_at, Spot.id))).all()
            clips = (await s.execute(select(Clip))).scalars().all()

        by_spot: dict[UUID, list[Clip]] = {}
        for clip in clips:
            by_spot.setdefault(clip.spot_id, []).append(clip)

        checks: List[OwnershipCheck] = []
        for spot_id, stored_owner_id in spots:
            expected = expected_owner(by_spot.get(spot_id, []))
            checks.append(
                OwnershipCheck(
                    spot_id=spot_id,
                    stored_owner_id=stored_owner_id,
                    expected_owner_id=expected,
                    correct=stored_owner_id == expected,
                )
            )

        wrong = sum(1 for c in checks if not c.correct)
        if wrong:
            logger.warning("%s of %s spots have a stale owner", wrong, len(checks))
        return checks


instrument_service_class(
    OwnershipService,
    prefix="services.ownership",
    exclude={"verify_ownership", "recalc_owner"},
)
