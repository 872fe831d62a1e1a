# services/profile.py
import logging
from uuid import UUID
from typing import ClassVar, List, Optional, Self

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from mob_maps.core.ledger import VoteLedger
from mob_maps.core.resolver import OwnershipResolver
from mob_maps.core.unit_of_work import TerritoryWork, territory_work
from mob_maps.db.database import DataBase
from mob_maps.db.models.clip import Clip
from mob_maps.db.schemas.profile import ProfileCreate, ProfileRead, ProfileUpdate
from mob_maps.db.schemas.spot import SpotRead
from mob_maps.errors import ConcurrentConflict, InvalidSpot, NotAuthenticated
from mob_maps.services.audit_log import audit_logger, instrument_service_class

logger = logging.getLogger(__name__)


class ProfileService:
    _instance: ClassVar[Optional["ProfileService"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self.database = DataBase()
        self._ledger = VoteLedger()
        self._resolver = OwnershipResolver()
        self._initialized = True

    async def create_profile(self, profile: ProfileCreate) -> ProfileRead:
        """
        Register the profile of a freshly signed-up identity.

        Raises:
            ValueError: the handle (or the id) is already taken.
        """
        try:
            return await self.database.create_profile(profile)
        except IntegrityError as exc:
            raise ValueError(f"Handle {profile.handle!r} is already taken") from exc

    async def get_profile(self, user_id: Optional[UUID]) -> Optional[ProfileRead]:
        return await self.database.get_profile(user_id)

    async def update_profile(self, profile: ProfileUpdate) -> ProfileRead:
        try:
            return await self.database.update_profile(profile)
        except IntegrityError as exc:
            raise ValueError(f"Handle {profile.handle!r} is already taken") from exc

    async def require_profile(self, user_id: Optional[UUID]) -> ProfileRead:
        """The authentication boundary: the caller must name an existing profile."""
        if user_id is None:
            raise NotAuthenticated("caller identity is missing")
        profile = await self.database.get_profile(user_id)
        if profile is None:
            raise NotAuthenticated(f"no profile for {user_id}")
        return profile

    async def owned_spots(self, user_id: UUID) -> List[SpotRead]:
        return await self.database.list_spots_owned_by(user_id)

    async def delete_profile(self, user_id: UUID) -> None:
        """
        Remove a profile together with its votes and clips.

        Every spot the user touched is cleaned up in its own unit of work:
        the user's vote is retracted through the ledger, their clips lose
        their votes and are deleted, and the owner is recomputed. Only then
        is the profile row itself deleted.

        Raises:
            LookupError: the profile does not exist.
            ValueError: the profile still owns a team.
            ConcurrentConflict: the user voted or uploaded again meanwhile.
        """
        if await self.database.get_profile(user_id) is None:
            raise LookupError("Profile not found.")
        team = await self.database.get_team_owned_by(user_id)
        if team is not None:
            raise ValueError(f"Profile {user_id} still owns team {team.id}")

        for spot_id in await self.database.list_spot_ids_touched_by(user_id):
            try:
                async with territory_work(spot_id) as work:
                    await self._release_spot(work, user_id)
            except InvalidSpot:
                # removed meanwhile together with its clips and votes
                logger.debug("spot %s vanished during profile cleanup", spot_id)

        try:
            await self.database.delete_profile(user_id)
        except IntegrityError as exc:
            raise ConcurrentConflict(f"profile {user_id} gained new clips or votes") from exc
        logger.info("profile %s deleted", user_id)

        # the actor row is gone, so the entry carries the id in its payload only
        try:
            await audit_logger.log(action="services.profile.delete_profile", payload={"user_id": str(user_id)})
        except Exception:
            logger.exception("Failed to write audit entry for deleted profile %s", user_id)

    async def _release_spot(self, work: TerritoryWork, user_id: UUID) -> None:
        s, guard, spot_id = work.session, work.guard, work.spot.id

        vote = await self._ledger.find_vote_in_spot(s, user_id, spot_id)
        if vote is not None:
            await self._ledger.remove_vote(s, guard, vote.id)

        stmt = select(Clip).where(Clip.spot_id == spot_id, Clip.user_id == user_id)
        for clip in (await s.execute(stmt)).scalars().all():
            await self._ledger.delete_votes_for_clip(s, guard, clip.id, spot_id)
            await s.delete(clip)
        await s.flush()

        await self._resolver.recalc_owner(s, guard, spot_id)


instrument_service_class(
    ProfileService,
    prefix="services.profile",
    actor_fields=("user_id",),
    exclude={"get_profile", "require_profile", "owned_spots", "delete_profile"},
)
