# db/models/clip.py
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from mob_maps.db.models._base import Base, utcnow

class Clip(Base):
    __tablename__ = "clips"
    __table_args__ = (
        CheckConstraint("vote_count >= 0", name="ck_clips_vote_count_non_negative"),
        Index("ix_clips_spot_rank", "spot_id", "vote_count", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    spot_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("spots.id", ondelete="CASCADE"), nullable=False)
    # profiles go through ProfileService.delete_profile, which clears these first
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    storage_path: Mapped[str] = mapped_column(String(512), nullable=False)
    thumb_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # projection of the vote ledger, maintained by VoteCountProjector
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    spot = relationship("Spot", back_populates="clips")
    uploader = relationship("Profile", back_populates="clips")
    votes: Mapped[List["Vote"]] = relationship(
        back_populates="clip", cascade="all, delete-orphan", passive_deletes=True
    )
