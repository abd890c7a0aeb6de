"""Task model."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from teamhub.db.base import BaseModel

if TYPE_CHECKING:
    from teamhub.models.team import Team


class TaskStatus(str, enum.Enum):
    """Board column of a task, in workflow order."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"

    @classmethod
    def ordered(cls) -> list["TaskStatus"]:
        return list(cls)

    @property
    def rank(self) -> int:
        return self.ordered().index(self)

    def next(self) -> "TaskStatus":
        """Following status; ``done`` is terminal."""
        ordered = self.ordered()
        return ordered[min(self.rank + 1, len(ordered) - 1)]


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def _in_clause(column: str, enum_cls: type[enum.Enum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class Task(BaseModel):
    """Task within a team."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint(_in_clause("status", TaskStatus), name="ck_tasks_status"),
        CheckConstraint(_in_clause("priority", TaskPriority), name="ck_tasks_priority"),
    )

    team_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.TODO.value, index=True
    )
    priority: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskPriority.MEDIUM.value
    )
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    assigned_to: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )
    created_by: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )

    team: Mapped["Team"] = relationship("Team", back_populates="tasks")

    def __repr__(self) -> str:
        try:
            return f"<Task {self.title[:30]}>"
        except Exception:
            return f"<Task id={self.id}>"
