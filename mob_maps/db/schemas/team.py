# db/schemas/team.py
import uuid
from datetime import datetime
from pydantic import Field, field_validator
from mob_maps.db.schemas._base import OrmModel

class TeamBase(OrmModel):
    name: str = Field(min_length=1, max_length=128)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Team name must not be blank")
        return value

class TeamCreate(TeamBase):
    owner_id: uuid.UUID

class TeamRead(TeamBase):
    id: uuid.UUID
    invite_code: str
    owner_id: uuid.UUID
    created_at: datetime
