# core/unit_of_work.py
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mob_maps.config import Settings
from mob_maps.core.locks import SpotGuard, SpotLocks
from mob_maps.db.database import DataBase
from mob_maps.db.models.spot import Spot
from mob_maps.errors import ConcurrentConflict, InvalidSpot

logger = logging.getLogger(__name__)


@dataclass
class TerritoryWork:
    session: AsyncSession
    guard: SpotGuard
    spot: Spot


@asynccontextmanager
async def territory_work(spot_id: uuid.UUID) -> AsyncIterator[TerritoryWork]:
    """
    One atomic read-then-write unit of work on a single spot.

    Order: wall-clock budget, in-process spot lock, session, spot row lock.
    Everything done inside commits together or not at all.

    Raises:
        InvalidSpot: the spot does not exist (any more).
        ConcurrentConflict: the budget ran out, or a unique constraint
            caught a concurrent writer.
    """
    settings = Settings()
    try:
        async with asyncio.timeout(settings.transaction_timeout_seconds):
            async with SpotLocks().hold(spot_id) as guard:
                async with DataBase().session() as s:
                    spot = await guard.lock_row(s)
                    if spot is None:
                        raise InvalidSpot(f"spot {spot_id} does not exist", spot_id=str(spot_id))
                    yield TerritoryWork(session=s, guard=guard, spot=spot)
    except TimeoutError as exc:
        logger.warning("unit of work on spot %s timed out after %ss", spot_id, settings.transaction_timeout_seconds)
        raise ConcurrentConflict(f"spot {spot_id} is busy") from exc
    except IntegrityError as exc:
        logger.warning("unit of work on spot %s hit a constraint: %s", spot_id, exc.orig)
        raise ConcurrentConflict(f"concurrent write on spot {spot_id}") from exc
