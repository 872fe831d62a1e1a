# services/leaderboard.py
from typing import ClassVar, List, Optional, Self

from sqlalchemy import func, select

from mob_maps.config import Settings
from mob_maps.db.database import DataBase
from mob_maps.db.models.profile import Profile
from mob_maps.db.models.spot import Spot
from mob_maps.db.models.team import Team
from mob_maps.db.models.team_member import TeamMember
from mob_maps.db.schemas.leaderboard import TeamLeaderboardRow, UserLeaderboardRow


class LeaderboardService:
	"""
	Read-time rankings over current ``spots.owner_id`` and team membership.
	Nothing is persisted, so there is nothing to keep in sync.
	"""
	_instance: ClassVar[Optional["LeaderboardService"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self._database = DataBase()
		self._settings = Settings()
		self._initialized = True

	def _effective_limit(self, limit: Optional[int]) -> int:
		if limit is None:
			limit = self._settings.leaderboard_limit
		return int(limit)

	async def user_leaderboard(self, limit: Optional[int] = None) -> List[UserLeaderboardRow]:
		"""Users owning at least one spot: count desc, handle asc (missing handles last), id asc."""
		limit = self._effective_limit(limit)
		if limit <= 0:
			return []

		owned = func.count(Spot.id).label("territories_owned")
		stmt = (
			select(Profile.id, Profile.handle, Profile.display_name, Profile.avatar_url, owned)
			.join(Spot, Spot.owner_id == Profile.id)
			.group_by(Profile.id, Profile.handle, Profile.display_name, Profile.avatar_url)
			.having(func.count(Spot.id) > 0)
			.order_by(owned.desc(), Profile.handle.asc().nullslast(), Profile.id.asc())
			.limit(limit)
		)
		async with self._database.session() as s:
			rows = (await s.execute(stmt)).all()

		return [
			UserLeaderboardRow(
				user_id=user_id,
				handle=handle,
				display_name=display_name,
				avatar_url=avatar_url,
				territories_owned=int(count),
			)
			for user_id, handle, display_name, avatar_url, count in rows
		]

	async def team_leaderboard(self, limit: Optional[int] = None) -> List[TeamLeaderboardRow]:
		"""Teams whose current members own at least one spot: distinct count desc, name asc, id asc."""
		limit = self._effective_limit(limit)
		if limit <= 0:
			return []

		members = (
			select(TeamMember.team_id, func.count(TeamMember.id).label("member_count"))
			.group_by(TeamMember.team_id)
			.subquery()
		)
		owned = func.count(func.distinct(Spot.id)).label("territories_owned")
		stmt = (
			select(Team.id, Team.name, owned, members.c.member_count)
			.join(TeamMember, TeamMember.team_id == Team.id)
			.join(Spot, Spot.owner_id == TeamMember.user_id)
			.join(members, members.c.team_id == Team.id)
			.group_by(Team.id, Team.name, members.c.member_count)
			.having(func.count(func.distinct(Spot.id)) > 0)
			.order_by(owned.desc(), Team.name.asc(), Team.id.asc())
			.limit(limit)
		)
		async with self._database.session() as s:
			rows = (await s.execute(stmt)).all()

		return [
			TeamLeaderboardRow(
				team_id=team_id,
				team_name=name,
				territories_owned=int(count),
				member_count=int(member_count),
			)
			for team_id, name, count, member_count in rows
		]
