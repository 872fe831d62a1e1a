# db/schemas/vote.py
import uuid
from datetime import datetime
from typing import Optional
from mob_maps.db.enums import VoteAction
from mob_maps.db.schemas._base import OrmModel

class VoteRead(OrmModel):
    id: uuid.UUID
    clip_id: uuid.UUID
    voter_id: uuid.UUID
    spot_id: uuid.UUID
    cast_at: datetime

class CastVoteResult(OrmModel):
    action: VoteAction
    clip_id: uuid.UUID
    new_vote_count: int
    spot_id: uuid.UUID
    previous_clip_id: Optional[uuid.UUID] = None
    spot_owner_id: Optional[uuid.UUID] = None
