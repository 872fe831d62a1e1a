import uuid

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from mob_maps.db.database import DataBase
from mob_maps.db.models.profile import Profile
from mob_maps.db.schemas.profile import ProfileCreate, ProfileUpdate
from mob_maps.errors import NotAuthenticated
from mob_maps.services.clip import ClipService
from mob_maps.services.ownership import OwnershipService
from mob_maps.services.profile import ProfileService
from mob_maps.services.team import TeamService
from mob_maps.services.voting import VoteService


async def test_create_with_external_id():
    identity = uuid.uuid4()
    profile = await ProfileService().create_profile(ProfileCreate(id=identity, handle="skater", display_name="Sk8"))

    assert profile.id == identity
    assert (await ProfileService().get_profile(identity)).handle == "skater"
    assert await ProfileService().get_profile(None) is None


async def test_handle_must_be_unique(make_profile):
    await make_profile("taken")
    with pytest.raises(ValueError):
        await ProfileService().create_profile(ProfileCreate(handle="taken"))


async def test_partial_update(make_profile):
    profile = await make_profile("before", display_name="Name", avatar_url="https://cdn.example/a.png")

    updated = await ProfileService().update_profile(ProfileUpdate(id=profile.id, handle="after"))
    assert updated.handle == "after"
    assert updated.display_name == "Name"

    cleared = await ProfileService().update_profile(ProfileUpdate(id=profile.id, avatar_url=None))
    assert cleared.avatar_url is None
    assert cleared.handle == "after"

    with pytest.raises(LookupError):
        await ProfileService().update_profile(ProfileUpdate(id=uuid.uuid4(), handle="ghost"))


async def test_require_profile(make_profile):
    profile = await make_profile()
    assert (await ProfileService().require_profile(profile.id)).id == profile.id
    with pytest.raises(NotAuthenticated):
        await ProfileService().require_profile(None)
    with pytest.raises(NotAuthenticated):
        await ProfileService().require_profile(uuid.uuid4())


async def test_owned_spots(make_profile, make_spot, make_clip):
    owner = await make_profile()
    first, second = await make_spot(title="first"), await make_spot(title="second")
    await make_clip(owner, first)
    await make_clip(owner, second)

    owned = await ProfileService().owned_spots(owner.id)
    assert {s.id for s in owned} == {first.id, second.id}
    assert owned[0].created_at >= owned[1].created_at


async def test_delete_profile_hands_spots_to_the_next_clip(make_profile, make_spot, make_clip):
    a, b, voter = await make_profile(), await make_profile(), await make_profile()
    spot = await make_spot()
    clip_a = await make_clip(a, spot, offset_seconds=0)
    clip_b = await make_clip(b, spot, offset_seconds=1)
    await VoteService().cast_vote(voter.id, clip_b.id)
    assert (await ClipService().get_spot(spot.id)).owner_id == b.id

    await ProfileService().delete_profile(b.id)

    assert await ProfileService().get_profile(b.id) is None
    assert await ClipService().get_clip(clip_b.id) is None
    assert (await ClipService().get_spot(spot.id)).owner_id == a.id
    assert await VoteService().get_user_vote(voter.id, spot.id) is None
    assert (await ClipService().get_clip(clip_a.id)).vote_count == 0
    assert all(check.correct for check in await OwnershipService().verify_ownership())


async def test_delete_profile_retracts_its_votes(make_profile, make_spot, make_clip):
    a, b, voter, other = [await make_profile() for _ in range(4)]
    spot = await make_spot()
    clip_a = await make_clip(a, spot, offset_seconds=0)
    clip_b = await make_clip(b, spot, offset_seconds=1)
    await VoteService().cast_vote(voter.id, clip_b.id)
    await VoteService().cast_vote(other.id, clip_a.id)
    # tie on one vote each: the earlier clip owns the spot
    assert (await ClipService().get_spot(spot.id)).owner_id == a.id

    await ProfileService().delete_profile(other.id)

    assert (await ClipService().get_clip(clip_a.id)).vote_count == 0
    assert (await ClipService().get_clip(clip_b.id)).vote_count == 1
    assert (await ClipService().get_spot(spot.id)).owner_id == b.id
    assert await OwnershipService().reconcile_vote_counts() == 0


async def test_delete_profile_errors(make_profile):
    with pytest.raises(LookupError):
        await ProfileService().delete_profile(uuid.uuid4())

    owner = await make_profile()
    await TeamService().create_team(owner.id, "Keepers")
    with pytest.raises(ValueError):
        await ProfileService().delete_profile(owner.id)
    assert await ProfileService().get_profile(owner.id) is not None


async def test_profile_rows_cannot_be_deleted_around_the_engine(make_profile, make_spot, make_clip):
    uploader = await make_profile()
    spot = await make_spot()
    await make_clip(uploader, spot)

    with pytest.raises(IntegrityError):
        async with DataBase().session() as s:
            await s.execute(delete(Profile).where(Profile.id == uploader.id))

    assert (await ClipService().get_spot(spot.id)).owner_id == uploader.id
