import uuid

import pytest

from mob_maps.config import Settings
from mob_maps.db.database import DataBase
from mob_maps.errors import InvalidClip
from mob_maps.services.audit_log import audit_logger
from mob_maps.services.voting import VoteService


@pytest.fixture
def audit_on(monkeypatch):
    monkeypatch.setattr(Settings(), "audit_enabled", True)


async def test_cast_vote_is_audited(audit_on, make_profile, make_spot, make_clip):
    uploader, voter = await make_profile(), await make_profile()
    spot = await make_spot()
    clip = await make_clip(uploader, spot)

    await VoteService().cast_vote(voter.id, clip.id)

    entries, total = await audit_logger.list_entries(action="services.votes.cast_vote")
    assert total == 1
    [entry] = entries
    assert entry.actor_id == voter.id
    assert entry.payload["data"]["result"]["action"] == "added"
    assert entry.payload["data"]["args"] == [str(voter.id), str(clip.id)]
    assert "_meta" in entry.payload


async def test_failures_are_audited_and_still_raised(audit_on, make_profile):
    voter = await make_profile()

    with pytest.raises(InvalidClip):
        await VoteService().cast_vote(voter.id, uuid.uuid4())

    entries, total = await audit_logger.list_entries(actor_id=voter.id, action="services.votes.cast_vote.error")
    assert total == 1
    assert "InvalidClip" in entries[0].payload["data"]["error"]


async def test_audit_failure_does_not_mask_the_result(audit_on, make_profile, make_spot, make_clip, monkeypatch):
    uploader, voter = await make_profile(), await make_profile()
    spot = await make_spot()
    clip = await make_clip(uploader, spot)

    async def broken(*args, **kwargs):
        raise RuntimeError("audit table is gone")

    monkeypatch.setattr(DataBase(), "create_audit_log", broken)

    result = await VoteService().cast_vote(voter.id, clip.id)
    assert result.new_vote_count == 1


async def test_nothing_is_written_when_disabled(make_profile, make_spot, make_clip):
    uploader, voter = await make_profile(), await make_profile()
    spot = await make_spot()
    clip = await make_clip(uploader, spot)

    await VoteService().cast_vote(voter.id, clip.id)

    assert await audit_logger.list_entries() == ([], 0)


async def test_bound_actor_is_used_as_fallback(audit_on):
    actor = uuid.uuid4()
    token = audit_logger.bind_actor(None)
    audit_logger.unbind_actor(token)
    assert audit_logger.current_actor() is None

    entry = await audit_logger.log(action="maintenance.note", payload={"spots": 3})
    assert entry.actor_id is None
    assert entry.payload["spots"] == 3

    token = audit_logger.bind_actor(actor)
    try:
        assert audit_logger.current_actor() == actor
    finally:
        audit_logger.unbind_actor(token)
