# db/schemas/leaderboard.py
import uuid
from typing import Optional
from mob_maps.db.schemas._base import OrmModel

class UserLeaderboardRow(OrmModel):
    user_id: uuid.UUID
    handle: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    territories_owned: int

class TeamLeaderboardRow(OrmModel):
    team_id: uuid.UUID
    team_name: str
    territories_owned: int
    member_count: int
