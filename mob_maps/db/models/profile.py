# db/models/profile.py
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from mob_maps.db.models._base import Base, utcnow

class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    handle: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    clips: Mapped[List["Clip"]] = relationship(back_populates="uploader", passive_deletes="all")
    membership: Mapped[Optional["TeamMember"]] = relationship(back_populates="user", passive_deletes=True)
