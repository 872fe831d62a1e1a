import os
import tempfile
from datetime import datetime, timedelta

# must run before mob_maps.config is imported anywhere
_TMP_DIR = tempfile.mkdtemp(prefix="mob_maps_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/mob_maps.db"
os.environ["AUDIT_ENABLED"] = "0"
os.environ["TRANSACTION_TIMEOUT_SECONDS"] = "10"

import pytest

from mob_maps.core.locks import SpotLocks
from mob_maps.db.database import DataBase
from mob_maps.db.schemas.clip import ClipCreate
from mob_maps.db.schemas.profile import ProfileCreate
from mob_maps.db.schemas.spot import SpotCreate
from mob_maps.services import clip as clip_service_module
from mob_maps.services.clip import ClipService
from mob_maps.services.profile import ProfileService


T0 = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
async def database():
    db = DataBase()
    SpotLocks()._locks.clear()
    await db.create_all()
    yield db
    await db.drop_all()
    await db.dispose()


@pytest.fixture
def make_profile():
    counter = {"n": 0}

    async def _make(handle=..., **kwargs):
        counter["n"] += 1
        if handle is ...:
            handle = f"user{counter['n']}"
        return await ProfileService().create_profile(ProfileCreate(handle=handle, **kwargs))

    return _make


@pytest.fixture
def make_spot(make_profile):
    async def _make(creator=None, title="Stairs"):
        if creator is None:
            creator = await make_profile()
        return await ClipService().create_spot(creator.id, SpotCreate(title=title, lat=52.52, lng=13.40))

    return _make


@pytest.fixture
def make_clip(monkeypatch):
    async def _make(uploader, spot, offset_seconds=0, created_at=None):
        if created_at is None:
            created_at = T0 + timedelta(seconds=offset_seconds)
        # pin the upload clock so tie-breaks are reproducible
        monkeypatch.setattr(clip_service_module, "utcnow", lambda: created_at)
        data = ClipCreate(spot_id=spot.id, storage_path=f"clips/{spot.id}/{uploader.id}.mp4")
        return await ClipService().create_clip(uploader.id, data)

    return _make
