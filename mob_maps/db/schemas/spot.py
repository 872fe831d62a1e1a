# db/schemas/spot.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import Field
from mob_maps.db.schemas._base import OrmModel

class SpotBase(OrmModel):
    title: Optional[str] = Field(default=None, max_length=256)
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

class SpotCreate(SpotBase): ...

class SpotRead(SpotBase):
    id: uuid.UUID
    owner_id: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
