# db/schemas/team_member.py
import uuid
from datetime import datetime
from mob_maps.db.schemas._base import OrmModel
from mob_maps.db.enums import MemberRole


class TeamMemberRead(OrmModel):
    id: uuid.UUID
    role: MemberRole
    user_id: uuid.UUID
    team_id: uuid.UUID
    joined_at: datetime

    def __hash__(self) -> int:
        return hash(self.id)
