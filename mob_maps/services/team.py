# services/team.py
import logging
import secrets
import time
from collections import OrderedDict
from uuid import UUID
from typing import Callable, Optional, ClassVar, Self, List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mob_maps.config import Settings
from mob_maps.db.database import DataBase
from mob_maps.db.enums import MemberRole
from mob_maps.db.models.team import Team
from mob_maps.db.models.team_member import TeamMember
from mob_maps.db.schemas.team import TeamRead, TeamCreate
from mob_maps.db.schemas.team_member import TeamMemberRead
from mob_maps.errors import AlreadyMember, ConcurrentConflict, InvalidInviteCode
from mob_maps.services.audit_log import instrument_service_class
from mob_maps.services.profile import ProfileService

logger = logging.getLogger(__name__)


class InviteCodeReservations:
	"""
	Codes handed out by this process that may not be persisted yet.
	A code stays reserved until its team is stored or the reservation expires.
	"""
	def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
		self._ttl = ttl_seconds
		self._clock = clock
		self._codes: "OrderedDict[str, float]" = OrderedDict()  # code -> reserved at

	def _prune(self, now: float) -> None:
		while self._codes:
			code, reserved_at = next(iter(self._codes.items()))
			if now - reserved_at < self._ttl:
				break
			self._codes.pop(code)

	def reserve(self, code: str) -> bool:
		now = self._clock()
		self._prune(now)
		if code in self._codes:
			return False
		self._codes[code] = now
		return True

	def release(self, code: str) -> None:
		self._codes.pop(code, None)

	def __contains__(self, code: str) -> bool:
		self._prune(self._clock())
		return code in self._codes


class TeamService:
	_instance: ClassVar[Optional["TeamService"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._database = DataBase()
		self._settings = Settings()
		self._profile_svc = ProfileService()
		self._reservations = InviteCodeReservations(self._settings.invite_code_reservation_seconds)

		self._initialized = True

	@staticmethod
	def normalize_invite_code(code: str) -> str:
		return (code or "").strip().upper()

	def _random_code(self) -> str:
		alphabet = self._settings.invite_code_alphabet
		return "".join(secrets.choice(alphabet) for _ in range(self._settings.invite_code_length))

	async def generate_invite_code(self) -> str:
		"""
		Draw random codes until one is neither stored nor reserved by a
		concurrent caller, at most ``INVITE_CODE_MAX_ATTEMPTS`` times.

		Raises:
			ConcurrentConflict: every attempt collided.
		"""
		attempts = self._settings.invite_code_max_attempts
		for attempt in range(1, attempts + 1):
			code = self._random_code()
			# reserve before awaiting so no concurrent caller can draw it too
			if not self._reservations.reserve(code):
				continue
			if await self._database.invite_code_exists(code):
				self._reservations.release(code)
				logger.debug("invite code collision on attempt %s", attempt)
				continue
			return code

		logger.warning("no free invite code after %s attempts", attempts)
		raise ConcurrentConflict(f"no free invite code after {attempts} attempts")

	async def _ensure_membership(self, s: AsyncSession, team_id: UUID, user_id: UUID, role: MemberRole) -> TeamMember:
		stmt = select(TeamMember).where(TeamMember.user_id == user_id)
		membership = (await s.execute(stmt)).scalar_one_or_none()
		if membership is not None:
			if membership.team_id != team_id:
				raise AlreadyMember(f"user {user_id} is in team {membership.team_id}")
			return membership

		membership = TeamMember(team_id=team_id, user_id=user_id, role=role)
		s.add(membership)
		await s.flush()
		return membership

	async def create_team(self, owner_id: Optional[UUID], name: str) -> TeamRead:
		"""
		Create a team with a fresh invite code; the owner becomes its first member.

		Raises:
			NotAuthenticated: unknown owner.
			AlreadyMember: the owner already belongs to a team.
		"""
		await self._profile_svc.require_profile(owner_id)
		data = TeamCreate(owner_id=owner_id, name=name)

		if await self._database.get_membership_by_user(owner_id) is not None:
			raise AlreadyMember(f"user {owner_id} is already in a team")

		code = await self.generate_invite_code()
		try:
			async with self._database.session() as s:
				team = Team(name=data.name, invite_code=code, owner_id=data.owner_id)
				s.add(team)
				await s.flush()
				await self._ensure_membership(s, team.id, data.owner_id, MemberRole.OWNER)
				await s.refresh(team)
		except IntegrityError as exc:
			if await self._database.get_membership_by_user(owner_id) is not None:
				raise AlreadyMember(f"user {owner_id} is already in a team") from exc
			raise ConcurrentConflict(f"invite code {code} was taken concurrently") from exc
		finally:
			self._reservations.release(code)

		logger.info("team %s (%s) created by %s", team.id, team.name, owner_id)
		return TeamRead.model_validate(team)

	async def join_team(self, user_id: Optional[UUID], invite_code: str) -> TeamRead:
		"""
		Raises:
			NotAuthenticated: unknown user.
			InvalidInviteCode: no team has this code.
			AlreadyMember: the user already belongs to a team (this one included).
		"""
		await self._profile_svc.require_profile(user_id)

		code = self.normalize_invite_code(invite_code)
		team = await self._database.get_team_by_invite_code(code)
		if team is None:
			raise InvalidInviteCode(f"invite code {code!r} matches no team", code=code)

		try:
			async with self._database.session() as s:
				stmt = select(TeamMember).where(TeamMember.user_id == user_id)
				if (await s.execute(stmt)).scalar_one_or_none() is not None:
					raise AlreadyMember(f"user {user_id} is already in a team")
				s.add(TeamMember(team_id=team.id, user_id=user_id, role=MemberRole.MEMBER))
		except IntegrityError as exc:
			raise AlreadyMember(f"user {user_id} is already in a team") from exc

		logger.info("user %s joined team %s", user_id, team.id)
		return team

	async def leave_team(self, user_id: UUID) -> None:
		"""Remove the user's membership, if any."""
		async with self._database.session() as s:
			result = await s.execute(delete(TeamMember).where(TeamMember.user_id == user_id))
		if result.rowcount:
			logger.info("user %s left their team", user_id)

	async def get_team(self, team_id: UUID) -> Optional[TeamRead]:
		return await self._database.get_team(team_id)

	async def get_team_for_user(self, user_id: UUID) -> Optional[TeamRead]:
		membership = await self._database.get_membership_by_user(user_id)
		if membership is None:
			return None
		return await self._database.get_team(membership.team_id)

	async def list_members(self, team_id: UUID) -> List[TeamMemberRead]:
		return await self._database.get_memberships_by_team(team_id)

	async def team_member_count(self, team_id: UUID) -> int:
		return len(await self.list_members(team_id))


instrument_service_class(
	TeamService,
	prefix="services.teams",
	actor_fields=("user_id", "owner_id"),
	exclude={"get_team", "get_team_for_user", "list_members", "team_member_count", "generate_invite_code"},
)
