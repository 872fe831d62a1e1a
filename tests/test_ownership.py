import uuid

import pytest
from sqlalchemy import select, update

from mob_maps.core.resolver import expected_owner, rank_clips
from mob_maps.db.database import DataBase
from mob_maps.db.models._base import utcnow
from mob_maps.db.models.clip import Clip
from mob_maps.db.models.spot import Spot
from mob_maps.db.models.vote import Vote
from mob_maps.db.schemas.clip import ClipCreate
from mob_maps.errors import InvalidClip, InvalidSpot, PermissionDenied
from mob_maps.services.clip import ClipService
from mob_maps.services.ownership import OwnershipService
from mob_maps.services.voting import VoteService

from conftest import T0


async def owner_of(spot_id):
    return (await ClipService().get_spot(spot_id)).owner_id


async def test_spot_without_clips_has_no_owner(make_spot):
    spot = await make_spot()
    assert spot.owner_id is None
    assert await OwnershipService().recalc_owner(spot.id) is None


async def test_zero_votes_resolve_to_earliest_clip(make_profile, make_spot, make_clip):
    early, late = await make_profile(), await make_profile()
    spot = await make_spot()
    # inserted out of order on purpose
    await make_clip(late, spot, offset_seconds=30)
    await make_clip(early, spot, offset_seconds=5)

    assert await owner_of(spot.id) == early.id


async def test_tie_on_votes_picks_earlier_clip(make_profile, make_spot, make_clip):
    early, late, v1, v2 = [await make_profile() for _ in range(4)]
    spot = await make_spot()
    late_clip = await make_clip(late, spot, offset_seconds=60)
    early_clip = await make_clip(early, spot, offset_seconds=0)

    await VoteService().cast_vote(v1.id, late_clip.id)
    assert await owner_of(spot.id) == late.id
    await VoteService().cast_vote(v2.id, early_clip.id)

    assert await owner_of(spot.id) == early.id
    for _ in range(3):
        assert await OwnershipService().recalc_owner(spot.id) == early.id


async def test_equal_timestamps_fall_back_to_lowest_clip_id(make_profile, make_spot, make_clip):
    uploaders = [await make_profile() for _ in range(3)]
    spot = await make_spot()
    clips = [await make_clip(u, spot, created_at=T0) for u in uploaders]

    lowest = min(clips, key=lambda c: c.id)
    assert await owner_of(spot.id) == lowest.user_id
    assert expected_owner(clips) == lowest.user_id


def test_rank_clips_orders_by_votes_then_age_then_id():
    a = Clip(id=uuid.UUID(int=2), user_id=uuid.uuid4(), vote_count=1, created_at=T0)
    b = Clip(id=uuid.UUID(int=1), user_id=uuid.uuid4(), vote_count=1, created_at=T0)
    c = Clip(id=uuid.UUID(int=0), user_id=uuid.uuid4(), vote_count=0, created_at=T0)
    d = Clip(id=uuid.UUID(int=3), user_id=uuid.uuid4(), vote_count=3, created_at=T0.replace(year=2030))

    assert [x.id.int for x in rank_clips([a, b, c, d])] == [3, 1, 2, 0]
    assert expected_owner([]) is None


async def test_recalc_is_idempotent(make_profile, make_spot, make_clip):
    a, b, voter = await make_profile(), await make_profile(), await make_profile()
    spot = await make_spot()
    await make_clip(a, spot, offset_seconds=0)
    clip_b = await make_clip(b, spot, offset_seconds=1)
    await VoteService().cast_vote(voter.id, clip_b.id)

    first = await OwnershipService().recalc_owner(spot.id)
    second = await OwnershipService().recalc_owner(spot.id)
    assert first == second == b.id


async def test_recalc_unknown_spot():
    with pytest.raises(InvalidSpot):
        await OwnershipService().recalc_owner(uuid.uuid4())


async def test_recalc_all_matches_per_spot_recalc(make_profile, make_spot, make_clip):
    users = [await make_profile() for _ in range(3)]
    spots = [await make_spot(title=f"s{i}") for i in range(3)]
    await make_spot(title="empty")
    for i, spot in enumerate(spots):
        for j, user in enumerate(users):
            await make_clip(user, spot, offset_seconds=(i + j) % 3)

    # wipe stored owners to simulate a backfill
    async with DataBase().session() as s:
        await s.execute(update(Spot).values(owner_id=None))

    processed = await OwnershipService().recalc_all_owners()
    assert processed == 3

    after_bulk = {spot.id: await owner_of(spot.id) for spot in spots}
    for spot in spots:
        assert await OwnershipService().recalc_owner(spot.id) == after_bulk[spot.id]
    assert all(check.correct for check in await OwnershipService().verify_ownership())


async def test_clip_insert_and_delete_recompute_owner(make_profile, make_spot, make_clip):
    a, b, voter = await make_profile(), await make_profile(), await make_profile()
    spot = await make_spot()
    clip_a = await make_clip(a, spot, offset_seconds=0)
    clip_b = await make_clip(b, spot, offset_seconds=1)
    await VoteService().cast_vote(voter.id, clip_b.id)
    assert await owner_of(spot.id) == b.id

    await ClipService().delete_clip(b.id, clip_b.id)
    assert await owner_of(spot.id) == a.id
    assert await VoteService().get_user_vote(voter.id, spot.id) is None

    await ClipService().delete_clip(a.id, clip_a.id)
    assert await owner_of(spot.id) is None


async def test_delete_clip_permissions(make_profile, make_spot, make_clip):
    uploader, stranger, moderator = await make_profile(), await make_profile(), await make_profile()
    spot = await make_spot()
    clip = await make_clip(uploader, spot)

    with pytest.raises(PermissionDenied) as info:
        await ClipService().delete_clip(stranger.id, clip.id)
    assert info.value.code == "permission_denied"
    assert (await ClipService().get_clip(clip.id)) is not None

    await ClipService().delete_clip(moderator.id, clip.id, moderator=True)
    assert await ClipService().get_clip(clip.id) is None
    with pytest.raises(InvalidClip):
        await ClipService().delete_clip(uploader.id, clip.id)


async def test_delete_spot_cascades(make_profile, make_spot, make_clip):
    creator, uploader, voter = await make_profile(), await make_profile(), await make_profile()
    spot = await make_spot(creator=creator)
    clip = await make_clip(uploader, spot)
    await VoteService().cast_vote(voter.id, clip.id)

    with pytest.raises(PermissionDenied):
        await ClipService().delete_spot(uploader.id, spot.id)
    await ClipService().delete_spot(creator.id, spot.id)

    assert await ClipService().get_spot(spot.id) is None
    assert await ClipService().get_clip(clip.id) is None
    async with DataBase().session() as s:
        assert (await s.execute(select(Vote))).first() is None


async def test_reconcile_fixes_drifted_counts(make_profile, make_spot, make_clip):
    a, b, voter = await make_profile(), await make_profile(), await make_profile()
    spot = await make_spot()
    clip_a = await make_clip(a, spot, offset_seconds=0)
    clip_b = await make_clip(b, spot, offset_seconds=1)
    await VoteService().cast_vote(voter.id, clip_a.id)

    async with DataBase().session() as s:
        await s.execute(update(Clip).where(Clip.id == clip_a.id).values(vote_count=0))
        await s.execute(update(Clip).where(Clip.id == clip_b.id).values(vote_count=5))

    checks = await OwnershipService().verify_ownership()
    assert [c.correct for c in checks] == [False]
    assert checks[0].stored_owner_id == a.id
    assert checks[0].expected_owner_id == b.id  # ranking over the drifted projection

    fixed = await OwnershipService().reconcile_vote_counts()

    assert fixed == 2
    assert (await ClipService().get_clip(clip_a.id)).vote_count == 1
    assert (await ClipService().get_clip(clip_b.id)).vote_count == 0
    assert await owner_of(spot.id) == a.id
    assert await OwnershipService().reconcile_vote_counts() == 0


async def test_verify_reports_stale_owner(make_profile, make_spot, make_clip):
    a, b = await make_profile(), await make_profile()
    spot = await make_spot()
    await make_clip(a, spot)

    async with DataBase().session() as s:
        await s.execute(update(Spot).where(Spot.id == spot.id).values(owner_id=b.id))

    [check] = await OwnershipService().verify_ownership()
    assert check.spot_id == spot.id
    assert check.stored_owner_id == b.id
    assert check.expected_owner_id == a.id
    assert not check.correct


async def test_list_clips_in_ranking_order(make_profile, make_spot, make_clip):
    a, b, voter = await make_profile(), await make_profile(), await make_profile()
    spot = await make_spot()
    first = await make_clip(a, spot, offset_seconds=0)
    second = await make_clip(b, spot, offset_seconds=1)
    await VoteService().cast_vote(voter.id, second.id)

    assert [c.id for c in await ClipService().list_clips(spot.id)] == [second.id, first.id]
    with pytest.raises(InvalidSpot):
        await ClipService().list_clips(uuid.uuid4())


async def test_list_spots_paging(make_profile, make_spot):
    creator = await make_profile()
    spots = [await make_spot(creator=creator, title=f"spot {i}") for i in range(3)]

    page, total = await ClipService().list_spots(page=0, page_size=2)
    assert total == 3
    assert [s.id for s in page] == [spots[2].id, spots[1].id]

    rest, _ = await ClipService().list_spots(page=1, page_size=2)
    assert [s.id for s in rest] == [spots[0].id]


async def test_upload_time_is_stamped_by_the_service(make_profile, make_spot):
    uploader = await make_profile()
    spot = await make_spot()
    assert "created_at" not in ClipCreate.model_fields

    before = utcnow()
    clip = await ClipService().create_clip(uploader.id, ClipCreate(spot_id=spot.id, storage_path="clips/late.mp4"))

    assert before <= clip.created_at <= utcnow()
