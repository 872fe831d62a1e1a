# services/clip.py
import logging
from uuid import UUID
from typing import ClassVar, List, Optional, Self

from sqlalchemy import select

from mob_maps.core.ledger import VoteLedger
from mob_maps.core.resolver import OwnershipResolver
from mob_maps.core.unit_of_work import territory_work
from mob_maps.db.database import DataBase
from mob_maps.db.models._base import utcnow
from mob_maps.db.models.clip import Clip
from mob_maps.db.models.spot import Spot
from mob_maps.db.schemas.clip import ClipCreate, ClipRead
from mob_maps.db.schemas.spot import SpotCreate, SpotRead
from mob_maps.errors import InvalidClip, InvalidSpot, PermissionDenied
from mob_maps.services.audit_log import instrument_service_class
from mob_maps.services.profile import ProfileService

logger = logging.getLogger(__name__)


class ClipService:
    """
    Spot and clip CRUD.

    Every clip insert or delete recomputes the owner of its spot inside the
    same unit of work, and a clip's votes are removed before the clip itself.
    """
    _instance: ClassVar[Optional["ClipService"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self.database = DataBase()
        self._profile_svc = ProfileService()
        self._ledger = VoteLedger()
        self._resolver = OwnershipResolver()
        self._initialized = True

    async def create_spot(self, creator_id: Optional[UUID], spot: SpotCreate) -> SpotRead:
        await self._profile_svc.require_profile(creator_id)

        row = Spot(title=spot.title, lat=spot.lat, lng=spot.lng, created_by=creator_id)
        async with self.database.session() as s:
            s.add(row)
            await s.flush()
            await s.refresh(row)
        return SpotRead.model_validate(row)

    async def create_clip(self, uploader_id: Optional[UUID], clip: ClipCreate) -> ClipRead:
        """
        Attach a clip to a spot with zero votes and recompute the spot's owner.

        Raises:
            NotAuthenticated: unknown uploader.
            InvalidSpot: the spot does not exist.
        """
        await self._profile_svc.require_profile(uploader_id)

        async with territory_work(clip.spot_id) as work:
            row = Clip(
                spot_id=clip.spot_id,
                user_id=uploader_id,
                storage_path=clip.storage_path,
                thumb_path=clip.thumb_path,
                duration_seconds=clip.duration_seconds,
                vote_count=0,
                # upload time is the ownership tie-break, always stamped here
                created_at=utcnow(),
            )
            work.session.add(row)
            await work.session.flush()
            await work.session.refresh(row)
            await self._resolver.recalc_owner(work.session, work.guard, clip.spot_id)

        logger.info("clip %s uploaded to spot %s by %s", row.id, row.spot_id, uploader_id)
        return ClipRead.model_validate(row)

    async def delete_clip(self, actor_id: Optional[UUID], clip_id: UUID, *, moderator: bool = False) -> None:
        """
        Remove a clip: its votes first, then the clip, then recompute the owner.

        Raises:
            InvalidClip: the clip does not exist.
            PermissionDenied: the actor is neither the uploader nor a moderator.
        """
        await self._profile_svc.require_profile(actor_id)

        spot_id = await self.database.get_clip_spot_id(clip_id)
        if spot_id is None:
            raise InvalidClip(f"clip {clip_id} does not exist")

        async with territory_work(spot_id) as work:
            s = work.session
            row = await s.get(Clip, clip_id)
            if row is None:
                raise InvalidClip(f"clip {clip_id} does not exist")
            if not moderator and row.user_id != actor_id:
                raise PermissionDenied(f"{actor_id} cannot delete clip {clip_id}")

            await self._ledger.delete_votes_for_clip(s, work.guard, clip_id, spot_id)
            await s.delete(row)
            await s.flush()
            await self._resolver.recalc_owner(s, work.guard, spot_id)

        logger.info("clip %s removed from spot %s by %s", clip_id, spot_id, actor_id)

    async def delete_spot(self, actor_id: Optional[UUID], spot_id: UUID, *, moderator: bool = False) -> None:
        await self._profile_svc.require_profile(actor_id)

        async with territory_work(spot_id) as work:
            s = work.session
            if not moderator and work.spot.created_by != actor_id:
                raise PermissionDenied(f"{actor_id} cannot delete spot {spot_id}")

            await self._ledger.delete_votes_for_spot(s, work.guard, spot_id)
            clips = (await s.execute(select(Clip).where(Clip.spot_id == spot_id))).scalars().all()
            for clip in clips:
                await s.delete(clip)
            await s.flush()
            await s.delete(work.spot)

        logger.info("spot %s removed by %s", spot_id, actor_id)

    async def get_spot(self, spot_id: UUID) -> Optional[SpotRead]:
        return await self.database.get_spot(spot_id)

    async def get_clip(self, clip_id: UUID) -> Optional[ClipRead]:
        return await self.database.get_clip(clip_id)

    async def list_clips(self, spot_id: UUID) -> List[ClipRead]:
        if await self.database.get_spot(spot_id) is None:
            raise InvalidSpot(f"spot {spot_id} does not exist", spot_id=str(spot_id))
        return await self.database.list_clips_by_spot(spot_id)

    async def list_spots(self, page: int, page_size: int) -> tuple[list[SpotRead], int]:
        limit = page_size
        offset = max(page, 0) * page_size
        return await self.database.list_spots(limit=limit, offset=offset)


instrument_service_class(
    ClipService,
    prefix="services.clip",
    actor_fields=("actor_id", "uploader_id", "creator_id"),
    exclude={"get_spot", "get_clip", "list_clips", "list_spots"},
)
