"""Team and team membership models."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from teamhub.db.base import Base, BaseModel, UUIDMixin, utcnow

if TYPE_CHECKING:
    from teamhub.models.task import Task


class MemberRole(str, enum.Enum):
    """Role a user holds within a team."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Team(BaseModel):
    """Team owned by a single user.

    The owner is treated as a member by every access policy whether or not a
    ``team_members`` row exists for them.
    """

    __tablename__ = "teams"
    __table_args__ = (CheckConstraint("length(name) > 0", name="ck_teams_name_not_empty"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Deleting through the session cascades row by row so change events are
    # raised for members and tasks; the foreign keys cascade as well.
    members: Mapped[list["TeamMember"]] = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
    )
    tasks: Mapped[list["Task"]] = relationship(
        "Task",
        back_populates="team",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        try:
            return f"<Team {self.name}>"
        except Exception:
            return f"<Team id={self.id}>"


class TeamMember(Base, UUIDMixin):
    """Team membership with role."""

    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
        CheckConstraint(
            "role IN ('owner', 'admin', 'member')", name="ck_team_members_role"
        ),
    )

    team_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MemberRole.MEMBER.value
    )
    invited_by: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    team: Mapped["Team"] = relationship("Team", back_populates="members")

    def __repr__(self) -> str:
        return f"<TeamMember team={self.team_id} user={self.user_id}>"
