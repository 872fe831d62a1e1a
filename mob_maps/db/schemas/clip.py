# db/schemas/clip.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import Field
from mob_maps.db.schemas._base import OrmModel

class ClipBase(OrmModel):
    spot_id: uuid.UUID
    storage_path: str = Field(min_length=1, max_length=512)
    thumb_path: Optional[str] = Field(default=None, max_length=512)
    duration_seconds: Optional[int] = Field(default=None, ge=0)

class ClipCreate(ClipBase):
    pass

class ClipRead(ClipBase):
    id: uuid.UUID
    user_id: uuid.UUID
    vote_count: int = 0
    created_at: datetime
