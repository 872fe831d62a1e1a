# db/schemas/profile.py
import uuid
from datetime import datetime
from typing import Optional
from pydantic import Field
from mob_maps.db.schemas._base import OrmModel

class ProfileBase(OrmModel):
    handle: Optional[str] = Field(default=None, max_length=64)
    display_name: Optional[str] = Field(default=None, max_length=128)
    avatar_url: Optional[str] = None

class ProfileCreate(ProfileBase):
    # identity comes from the external auth provider when it already exists
    id: Optional[uuid.UUID] = None

class ProfileUpdate(OrmModel):
    """Only fields explicitly set on the model are written; ``None`` clears a field."""
    id: uuid.UUID
    handle: Optional[str] = Field(default=None, max_length=64)
    display_name: Optional[str] = Field(default=None, max_length=128)
    avatar_url: Optional[str] = None

class ProfileRead(ProfileBase):
    id: uuid.UUID
    created_at: datetime
