"""SQLAlchemy models package."""

from teamhub.models.user import Profile, User
from teamhub.models.team import MemberRole, Team, TeamMember
from teamhub.models.task import Task, TaskPriority, TaskStatus

__all__ = [
    # Accounts
    "User",
    "Profile",
    # Teams
    "MemberRole",
    "Team",
    "TeamMember",
    # Tasks
    "Task",
    "TaskPriority",
    "TaskStatus",
]
