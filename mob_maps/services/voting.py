# services/voting.py
import logging
from uuid import UUID
from typing import ClassVar, Optional, Self

from mob_maps.core.ledger import VoteLedger
from mob_maps.core.resolver import OwnershipResolver
from mob_maps.core.unit_of_work import territory_work
from mob_maps.db.database import DataBase
from mob_maps.db.enums import VoteAction
from mob_maps.db.models.clip import Clip
from mob_maps.db.schemas.vote import CastVoteResult, VoteRead
from mob_maps.errors import InvalidClip, InvalidSpot
from mob_maps.services.audit_log import instrument_service_class
from mob_maps.services.profile import ProfileService

logger = logging.getLogger(__name__)


class VoteService:
    _instance: ClassVar[Optional["VoteService"]] = None

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

    async def cast_vote(self, voter_id: Optional[UUID], clip_id: UUID) -> CastVoteResult:
        """
        Spend, retract or move the voter's single vote in the clip's spot.

        * no vote in the spot yet       -> ``added`` on the clip
        * the vote is on this clip      -> ``removed`` (toggle off)
        * the vote is on another clip   -> ``moved`` to this clip

        The ledger write, the vote_count projection and the owner recompute
        commit together. A caller that gets ``ConcurrentConflict`` retries the
        whole call.

        Raises:
            NotAuthenticated: no caller, or the caller has no profile.
            InvalidClip: the clip does not exist.
            ConcurrentConflict: the unit of work lost a race or timed out.
            StorageUnavailable: the store cannot be reached.
        """
        await self._profile_svc.require_profile(voter_id)

        spot_id = await self.database.get_clip_spot_id(clip_id)
        if spot_id is None:
            raise InvalidClip(f"clip {clip_id} does not exist")

        previous_clip_id: Optional[UUID] = None
        try:
            async with territory_work(spot_id) as work:
                s, guard = work.session, work.guard

                # the clip may have gone while we waited for the spot
                clip = await s.get(Clip, clip_id)
                if clip is None or clip.spot_id != spot_id:
                    raise InvalidClip(f"clip {clip_id} does not exist")

                existing = await self._ledger.find_vote_in_spot(s, voter_id, spot_id)
                if existing is None:
                    _, new_count = await self._ledger.record_vote(
                        s, guard, voter_id=voter_id, clip_id=clip_id, spot_id=spot_id
                    )
                    action = VoteAction.ADDED
                elif existing.clip_id == clip_id:
                    _, new_count = await self._ledger.remove_vote(s, guard, existing.id)
                    action = VoteAction.REMOVED
                else:
                    previous_clip_id = existing.clip_id
                    await self._ledger.remove_vote(s, guard, existing.id)
                    _, new_count = await self._ledger.record_vote(
                        s, guard, voter_id=voter_id, clip_id=clip_id, spot_id=spot_id
                    )
                    action = VoteAction.MOVED

                owner_id = await self._resolver.recalc_owner(s, guard, spot_id)
        except InvalidSpot as exc:
            # the spot and its clips were removed between lookup and lock
            raise InvalidClip(f"clip {clip_id} does not exist") from exc

        logger.info(
            "vote %s: voter %s clip %s (spot %s) now %s votes",
            action.value, voter_id, clip_id, spot_id, new_count,
        )
        return CastVoteResult(
            action=action,
            clip_id=clip_id,
            new_vote_count=new_count,
            spot_id=spot_id,
            previous_clip_id=previous_clip_id,
            spot_owner_id=owner_id,
        )

    async def get_user_vote(self, voter_id: UUID, spot_id: UUID) -> Optional[VoteRead]:
        return await self.database.get_vote_in_spot(voter_id, spot_id)


instrument_service_class(
    VoteService,
    prefix="services.votes",
    actor_fields=("voter_id",),
    exclude={"get_user_vote"},
)
