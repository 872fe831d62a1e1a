# db/models/vote.py
import uuid
from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from mob_maps.db.models._base import Base, utcnow

class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("clip_id", "voter_id", name="uq_votes_clip_voter"),
        # spot_id is the clip's territory copied at insert; one live vote per voter per spot
        UniqueConstraint("voter_id", "spot_id", name="uq_votes_voter_spot"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clip_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    voter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    spot_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("spots.id", ondelete="CASCADE"), nullable=False)
    cast_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    clip = relationship("Clip", back_populates="votes")
