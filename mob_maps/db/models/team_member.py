# db/models/team_member.py
import uuid
from datetime import datetime
from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from mob_maps.db.models._base import Base, utcnow
from mob_maps.db.enums import MemberRole

class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    role: Mapped[MemberRole] = mapped_column(
        SAEnum(MemberRole, name="member_role"), nullable=False, default=MemberRole.MEMBER
    )
    team_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    # unique: a user belongs to at most one team
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user = relationship("Profile", back_populates="membership")
    team = relationship("Team", back_populates="members")
