# db/database.py
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, ClassVar, Self, Any, List, Tuple

from sqlalchemy import event, select, func, union
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from mob_maps.config import Settings
from mob_maps.errors import ConcurrentConflict, MobMapsError, StorageUnavailable
from mob_maps.db.models._base import Base
from mob_maps.db.models.profile import Profile
from mob_maps.db.models.spot import Spot
from mob_maps.db.models.clip import Clip
from mob_maps.db.models.vote import Vote
from mob_maps.db.models.team import Team
from mob_maps.db.models.team_member import TeamMember
from mob_maps.db.models.audit_log import AuditLog
from mob_maps.db.schemas.profile import ProfileCreate, ProfileRead, ProfileUpdate
from mob_maps.db.schemas.spot import SpotRead
from mob_maps.db.schemas.clip import ClipRead
from mob_maps.db.schemas.vote import VoteRead
from mob_maps.db.schemas.team import TeamRead
from mob_maps.db.schemas.team_member import TeamMemberRead
from mob_maps.db.schemas.audit_log import AuditLogCreate, AuditLogRead

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
_CONFLICT_MESSAGES = ("database is locked", "deadlock", "could not serialize", "lock timeout")


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def translate_db_error(exc: DBAPIError) -> Exception:
    """
    Map a driver failure onto the engine's error taxonomy.

    Returns the exception to raise. Errors that are neither a lost race
    nor an unreachable store come back unchanged; IntegrityError in
    particular is left to the caller, which knows which constraint it hit.
    """
    if exc.connection_invalidated or isinstance(exc, InterfaceError):
        return StorageUnavailable(str(exc.orig))
    if isinstance(exc, OperationalError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        message = str(orig).lower()
        if sqlstate in _CONFLICT_SQLSTATES or any(m in message for m in _CONFLICT_MESSAGES):
            return ConcurrentConflict(str(orig))
        return StorageUnavailable(str(orig))
    return exc


class DataBase():
    """
    Async SQLAlchemy database singleton.
    Usage:
        db = DataBase()  # same instance everywhere
        async with db.session() as s:
            ...
    """
    _instance: ClassVar[Optional["DataBase"]] = None

    def __new__(cls, *args: Any, **kwargs: Any) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)

        return cls._instance

    def __init__(self, echo: Optional[bool] = None) -> None:
        if getattr(self, "_initialized", False):
            return

        settings = Settings()
        url = settings.database_url
        echo = settings.db_echo if echo is None else echo
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["timeout"] = max(1.0, settings.transaction_timeout_seconds)

        self._engine: AsyncEngine = create_async_engine(
            url, echo=echo, pool_pre_ping=True, connect_args=connect_args
        )
        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

        self._initialized = True

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provides an AsyncSession with safe commit/rollback semantics.

        The whole block is one unit of work: either everything commits or
        nothing does. Driver failures are re-raised as ConcurrentConflict or
        StorageUnavailable; business errors propagate unchanged.
        """
        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except MobMapsError:
            # typed engine errors (PermissionDenied is an OSError too) keep their kind
            await session.rollback()
            raise
        except DBAPIError as exc:
            await self._rollback_quietly(session)
            translated = translate_db_error(exc)
            if translated is exc:
                raise
            raise translated from exc
        except TimeoutError as exc:
            await self._rollback_quietly(session)
            raise ConcurrentConflict("store timed out") from exc
        except OSError as exc:
            await self._rollback_quietly(session)
            raise StorageUnavailable(str(exc)) from exc
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def _rollback_quietly(self, session: AsyncSession) -> None:
        try:
            await session.rollback()
        except (DBAPIError, OSError):
            # the connection is already gone; close() releases what is left
            logger.warning("Rollback failed after a storage error", exc_info=True)

    # --- schema management helpers (optional) ---

    async def create_all(self) -> None:
        """
        Create tables based on Base metadata. Use only in dev/tests; prefer Alembic in prod.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    # --- profiles ---

    async def create_profile(self, data: ProfileCreate) -> ProfileRead:
        """
        Insert a profile. The id is taken from the identity provider when given.

        Raises:
            IntegrityError: handle or id already taken.
        """
        profile = Profile(
            handle=data.handle,
            display_name=data.display_name,
            avatar_url=data.avatar_url,
        )
        if data.id is not None:
            profile.id = data.id

        async with self.session() as s:
            s.add(profile)
            await s.flush()
            await s.refresh(profile)

        return ProfileRead.model_validate(profile)

    async def get_profile(self, user_id: Optional[uuid.UUID]) -> Optional[ProfileRead]:
        if user_id is None:
            return None

        async with self.session() as s:
            row = await s.get(Profile, user_id)

        return ProfileRead.model_validate(row) if row is not None else None

    async def update_profile(self, data: ProfileUpdate) -> ProfileRead:
        """
        Partially update a profile by id.
        Only fields explicitly set on the payload are written; None clears a field.

        Raises:
            LookupError: if the profile does not exist.
            IntegrityError: handle already taken.
        """
        provided = data.model_fields_set - {"id"}
        async with self.session() as s:
            db_profile = await s.get(Profile, data.id)
            if db_profile is None:
                raise LookupError("Profile not found.")

            for field in provided:
                setattr(db_profile, field, getattr(data, field))

            await s.flush()
            await s.refresh(db_profile)

        return ProfileRead.model_validate(db_profile)

    async def delete_profile(self, user_id: uuid.UUID) -> bool:
        """
        Delete the profile row. Clips, votes and owned spots must be gone already.

        Raises:
            IntegrityError: something still references the profile.
        """
        async with self.session() as s:
            row = await s.get(Profile, user_id)
            if row is None:
                return False
            await s.delete(row)
        return True

    async def list_spot_ids_touched_by(self, user_id: uuid.UUID) -> List[uuid.UUID]:
        """Spots where the user uploaded a clip, voted, or is the stored owner."""
        async with self.session() as s:
            stmt = union(
                select(Clip.spot_id).where(Clip.user_id == user_id),
                select(Vote.spot_id).where(Vote.voter_id == user_id),
                select(Spot.id).where(Spot.owner_id == user_id),
            )
            ids = (await s.execute(stmt)).scalars().all()
        return sorted(ids, key=str)

    async def list_spots_owned_by(self, user_id: uuid.UUID) -> List[SpotRead]:
        async with self.session() as s:
            stmt = (
                select(Spot)
                .where(Spot.owner_id == user_id)
                .order_by(Spot.created_at.desc(), Spot.id.asc())
            )
            rows = (await s.execute(stmt)).scalars().all()
        return [SpotRead.model_validate(r) for r in rows]

    # --- spots & clips (reads) ---

    async def get_spot(self, spot_id: Optional[uuid.UUID]) -> Optional[SpotRead]:
        if spot_id is None:
            return None
        async with self.session() as s:
            row = await s.get(Spot, spot_id)
        return SpotRead.model_validate(row) if row is not None else None

    async def list_spots(self, *, limit: int, offset: int) -> Tuple[list[SpotRead], int]:
        """
        Deterministic paging, newest spots first.
        Returns (items, total).
        """
        limit = max(0, int(limit))
        offset = max(0, int(offset))

        async with self.session() as s:
            total = int((await s.execute(select(func.count(Spot.id)))).scalar_one())
            if limit == 0:
                return [], total

            stmt = (
                select(Spot)
                .order_by(Spot.created_at.desc(), Spot.id.asc())
                .limit(limit)
                .offset(offset)
            )
            rows = (await s.execute(stmt)).scalars().all()

        return [SpotRead.model_validate(r) for r in rows], total

    async def list_spot_ids_with_clips(self) -> List[uuid.UUID]:
        async with self.session() as s:
            stmt = select(Clip.spot_id).distinct()
            ids = (await s.execute(stmt)).scalars().all()
        return sorted(ids, key=str)

    async def get_clip(self, clip_id: Optional[uuid.UUID]) -> Optional[ClipRead]:
        if clip_id is None:
            return None
        async with self.session() as s:
            row = await s.get(Clip, clip_id)
        return ClipRead.model_validate(row) if row is not None else None

    async def get_clip_spot_id(self, clip_id: Optional[uuid.UUID]) -> Optional[uuid.UUID]:
        """Territory of a clip, or None when the clip does not exist."""
        if clip_id is None:
            return None
        async with self.session() as s:
            stmt = select(Clip.spot_id).where(Clip.id == clip_id)
            return (await s.execute(stmt)).scalar_one_or_none()

    async def list_clips_by_spot(self, spot_id: uuid.UUID) -> List[ClipRead]:
        """
        Clips of a spot in ranking order: vote_count desc, created_at asc, id asc.
        The first row is the clip whose uploader owns the spot.
        """
        async with self.session() as s:
            stmt = (
                select(Clip)
                .where(Clip.spot_id == spot_id)
                .order_by(Clip.vote_count.desc(), Clip.created_at.asc(), Clip.id.asc())
            )
            rows = (await s.execute(stmt)).scalars().all()
        return [ClipRead.model_validate(r) for r in rows]

    async def get_vote_in_spot(self, voter_id: uuid.UUID, spot_id: uuid.UUID) -> Optional[VoteRead]:
        async with self.session() as s:
            stmt = select(Vote).where(Vote.voter_id == voter_id, Vote.spot_id == spot_id)
            row = (await s.execute(stmt)).scalar_one_or_none()
        return VoteRead.model_validate(row) if row is not None else None

    # --- teams ---

    async def get_team(self, team_id: Optional[uuid.UUID]) -> Optional[TeamRead]:
        if not team_id:
            return None

        async with self.session() as s:
            row = await s.get(Team, team_id)

        return TeamRead.model_validate(row) if row else None

    async def get_team_by_invite_code(self, invite_code: str) -> Optional[TeamRead]:
        async with self.session() as s:
            stmt = select(Team).where(Team.invite_code == invite_code)
            row = (await s.execute(stmt)).scalar_one_or_none()
        return TeamRead.model_validate(row) if row else None

    async def get_team_owned_by(self, user_id: uuid.UUID) -> Optional[TeamRead]:
        async with self.session() as s:
            stmt = select(Team).where(Team.owner_id == user_id).limit(1)
            row = (await s.execute(stmt)).scalar_one_or_none()
        return TeamRead.model_validate(row) if row else None

    async def invite_code_exists(self, invite_code: str) -> bool:
        async with self.session() as s:
            stmt = select(Team.id).where(Team.invite_code == invite_code)
            return (await s.execute(stmt)).first() is not None

    async def get_membership_by_user(self, user_id: uuid.UUID) -> Optional[TeamMemberRead]:
        """
        Fetch the single membership of a user.

        Returns:
            Optional[TeamMemberRead]: DTO if the user is in a team; otherwise None.
        """
        async with self.session() as s:
            stmt = select(TeamMember).where(TeamMember.user_id == user_id)
            row = (await s.execute(stmt)).scalar_one_or_none()
        return TeamMemberRead.model_validate(row) if row else None

    async def get_memberships_by_team(self, team_id: uuid.UUID) -> List[TeamMemberRead]:
        """
        List all memberships of a team, oldest first.

        Args:
            team_id: Team UUID.

        Returns:
            list[TeamMemberRead]: Memberships of the team (possibly empty).
        """
        async with self.session() as s:
            stmt = (
                select(TeamMember)
                .where(TeamMember.team_id == team_id)
                .order_by(TeamMember.joined_at.asc(), TeamMember.id.asc())
            )
            rows = (await s.execute(stmt)).scalars().all()
        return [TeamMemberRead.model_validate(r) for r in rows]

    # ---------------------------------
    # Audit log helpers
    # ---------------------------------

    async def create_audit_log(self, payload: AuditLogCreate) -> AuditLogRead:
        """Persist a new audit log entry."""
        async with self.session() as s:
            record = AuditLog(
                actor_id=payload.actor_id,
                action=payload.action,
                payload=dict(payload.payload or {}),
            )
            s.add(record)
            await s.flush()
            await s.refresh(record)
            return AuditLogRead.model_validate(record)

    async def list_audit_logs(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        actor_id: uuid.UUID | None = None,
        action: str | None = None,
    ) -> tuple[list[AuditLogRead], int]:
        """Return paginated audit log entries filtered by actor/action."""
        limit = max(0, int(limit))
        offset = max(0, int(offset))

        async with self.session() as s:
            stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            count_stmt = select(func.count(AuditLog.id))
            if actor_id:
                stmt = stmt.where(AuditLog.actor_id == actor_id)
                count_stmt = count_stmt.where(AuditLog.actor_id == actor_id)
            if action:
                stmt = stmt.where(AuditLog.action == action)
                count_stmt = count_stmt.where(AuditLog.action == action)

            if limit:
                stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)

            rows = (await s.execute(stmt)).scalars().all()
            total = int((await s.execute(count_stmt)).scalar_one())

        return [AuditLogRead.model_validate(row) for row in rows], total
