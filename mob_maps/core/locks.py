# core/locks.py
"""
Per-territory serialization.

A unit of work that reads and then writes the vote/ownership state of a spot
runs inside ``SpotLocks().hold(spot_id)``. Inside one process the guard is an
``asyncio.Lock`` per spot, so work on different spots never waits on each
other. Across processes ``SpotGuard.lock_row`` takes a row lock on the spot
(``SELECT ... FOR UPDATE``); SQLite has no row locks and falls back to its
database-wide write lock.
"""
import asyncio
import uuid
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, ClassVar, Optional, Self

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mob_maps.db.models.spot import Spot
from mob_maps.errors import UnguardedLedgerWrite


class SpotGuard:
    def __init__(self, spot_id: uuid.UUID) -> None:
        self.spot_id = spot_id
        self.active = False

    def covers(self, spot_id: uuid.UUID) -> bool:
        return self.active and self.spot_id == spot_id

    def require(self, spot_id: uuid.UUID) -> None:
        if not self.covers(spot_id):
            raise UnguardedLedgerWrite(f"spot {spot_id} is not guarded")

    async def lock_row(self, session: AsyncSession) -> Optional[Spot]:
        """
        Lock the spot row for the rest of the session's transaction.

        Returns the spot, or None when it does not exist.
        """
        self.require(self.spot_id)
        stmt = select(Spot).where(Spot.id == self.spot_id).with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()


class SpotLocks:
    _instance: ClassVar[Optional["SpotLocks"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        # entries disappear once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._initialized = True

    def _get_lock(self, spot_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(spot_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[spot_id] = lock
        return lock

    def is_held(self, spot_id: uuid.UUID) -> bool:
        lock = self._locks.get(spot_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, spot_id: uuid.UUID) -> AsyncIterator[SpotGuard]:
        lock = self._get_lock(spot_id)
        guard = SpotGuard(spot_id)
        async with lock:
            guard.active = True
            try:
                yield guard
            finally:
                guard.active = False
