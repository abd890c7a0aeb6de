"""Team access control service.

Row-level authorization for the four published tables. Every read goes
through a policy's ``select_clause`` and every write through
``TablePolicy.enforce`` before it reaches the database:

- PROFILES: a user sees and edits only their own profile
- TEAMS: visible to owner and members, managed by the owner only
- TEAM_MEMBERS: visible to the team, inserted by the owner or by the joining
  user, otherwise managed by the owner
- TASKS: visible to and editable by the team, deleted by the owner only

Team ownership always implies membership, even without a ``team_members``
row for the owner.
"""

import enum
from typing import Any, ClassVar
from uuid import UUID

import structlog
from sqlalchemy import ColumnElement, Select, exists, false, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from teamhub.exceptions import PolicyDenied
from teamhub.models import Profile, Task, Team, TeamMember

logger = structlog.get_logger()


class Operation(str, enum.Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# ============================================================================
# Access predicates
# ============================================================================

def member_of_team_clause(user_id: UUID, team_id: Any) -> ColumnElement[bool]:
    """EXISTS clause: a team_members row links ``user_id`` to ``team_id``.

    ``team_id`` may be a literal UUID or a column of the enclosing query.
    """
    membership = aliased(TeamMember, name="access_membership")
    return exists().where(
        membership.team_id == team_id,
        membership.user_id == user_id,
    )


def owner_of_team_clause(user_id: UUID, team_id: Any) -> ColumnElement[bool]:
    """EXISTS clause: ``user_id`` owns ``team_id``."""
    owned = aliased(Team, name="access_team")
    return exists().where(
        owned.id == team_id,
        owned.owner_id == user_id,
    )


def team_access_clause(user_id: UUID, team_id: Any) -> ColumnElement[bool]:
    """Owner or member of the team."""
    return or_(
        owner_of_team_clause(user_id, team_id),
        member_of_team_clause(user_id, team_id),
    )


async def is_team_member(db: AsyncSession, user_id: UUID, team_id: UUID) -> bool:
    """True iff a membership row exists for the (team, user) pair."""
    result = await db.execute(select(member_of_team_clause(user_id, team_id)))
    return bool(result.scalar())


async def is_team_owner(db: AsyncSession, user_id: UUID, team_id: UUID) -> bool:
    """True iff the team's owner is ``user_id``."""
    result = await db.execute(select(owner_of_team_clause(user_id, team_id)))
    return bool(result.scalar())


async def has_team_access(db: AsyncSession, user_id: UUID, team_id: UUID) -> bool:
    """True iff ``user_id`` owns or is a member of the team."""
    result = await db.execute(select(team_access_clause(user_id, team_id)))
    return bool(result.scalar())


# ============================================================================
# Policies
# ============================================================================

class TablePolicy:
    """Per-operation authorization rules for one table."""

    table: ClassVar[str]
    model: ClassVar[type]
    # Columns that an update may never change
    immutable: ClassVar[frozenset[str]] = frozenset({"id"})

    def select_clause(self, actor_id: UUID) -> ColumnElement[bool]:
        raise NotImplementedError

    async def can_insert(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return False

    async def can_update(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return False

    async def can_delete(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return False

    async def can_select(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        result = await db.execute(
            select(self.model.id).where(self.model.id == row.id, self.select_clause(actor_id))
        )
        return result.first() is not None

    def changes_immutable(self, row: Any, changes: dict[str, Any]) -> bool:
        return any(
            column in self.immutable and getattr(row, column) != value
            for column, value in changes.items()
        )

    async def check(
        self,
        db: AsyncSession,
        actor_id: UUID,
        operation: Operation,
        row: Any,
        changes: dict[str, Any] | None = None,
    ) -> bool:
        """Evaluate the rule for ``operation`` without raising."""
        if operation is Operation.SELECT:
            return await self.can_select(db, actor_id, row)
        if operation is Operation.INSERT:
            return await self.can_insert(db, actor_id, row)
        if operation is Operation.UPDATE:
            if changes and self.changes_immutable(row, changes):
                return False
            return await self.can_update(db, actor_id, row)
        if operation is Operation.DELETE:
            return await self.can_delete(db, actor_id, row)
        return False

    async def enforce(
        self,
        db: AsyncSession,
        actor_id: UUID,
        operation: Operation,
        row: Any,
        changes: dict[str, Any] | None = None,
    ) -> None:
        """Raise PolicyDenied unless ``actor_id`` may perform ``operation`` on ``row``."""
        if not await self.check(db, actor_id, operation, row, changes):
            logger.info(
                "policy_denied",
                table=self.table,
                operation=operation.value,
                actor_id=str(actor_id),
            )
            raise PolicyDenied(self.table, operation.value)


class ProfilePolicy(TablePolicy):
    table = "profiles"
    model = Profile
    immutable = frozenset({"id", "user_id"})

    def select_clause(self, actor_id: UUID) -> ColumnElement[bool]:
        return Profile.user_id == actor_id

    async def can_insert(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return row.user_id == actor_id

    async def can_update(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return row.user_id == actor_id

    # Profiles are removed only with their account


class TeamPolicy(TablePolicy):
    table = "teams"
    model = Team
    immutable = frozenset({"id", "owner_id"})

    def select_clause(self, actor_id: UUID) -> ColumnElement[bool]:
        return or_(Team.owner_id == actor_id, member_of_team_clause(actor_id, Team.id))

    async def can_insert(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return row.owner_id == actor_id

    async def can_update(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return row.owner_id == actor_id

    async def can_delete(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return row.owner_id == actor_id


class TeamMemberPolicy(TablePolicy):
    table = "team_members"
    model = TeamMember
    immutable = frozenset({"id", "team_id", "user_id"})

    def select_clause(self, actor_id: UUID) -> ColumnElement[bool]:
        return team_access_clause(actor_id, TeamMember.team_id)

    async def can_insert(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        # Self-join, or the owner managing membership
        if row.user_id == actor_id:
            return True
        return await is_team_owner(db, actor_id, row.team_id)

    async def can_update(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return await is_team_owner(db, actor_id, row.team_id)

    async def can_delete(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return await is_team_owner(db, actor_id, row.team_id)


class TaskPolicy(TablePolicy):
    table = "tasks"
    model = Task
    immutable = frozenset({"id", "team_id", "created_by"})

    def select_clause(self, actor_id: UUID) -> ColumnElement[bool]:
        return team_access_clause(actor_id, Task.team_id)

    async def can_insert(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        if row.created_by != actor_id:
            return False
        return await has_team_access(db, actor_id, row.team_id)

    async def can_update(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return await has_team_access(db, actor_id, row.team_id)

    async def can_delete(self, db: AsyncSession, actor_id: UUID, row: Any) -> bool:
        return await is_team_owner(db, actor_id, row.team_id)


POLICIES: dict[str, TablePolicy] = {
    policy.table: policy
    for policy in (ProfilePolicy(), TeamPolicy(), TeamMemberPolicy(), TaskPolicy())
}


def policy_for(model: type) -> TablePolicy:
    return POLICIES[model.__tablename__]


def scoped_select(model: type, actor_id: UUID | None) -> Select:
    """SELECT over ``model`` restricted to rows ``actor_id`` may read.

    Anonymous callers get an always-empty query, never an error.
    """
    if actor_id is None:
        return select(model).where(false())
    return select(model).where(policy_for(model).select_clause(actor_id))


async def get_visible(db: AsyncSession, model: type, actor_id: UUID, row_id: UUID) -> Any | None:
    """Load one row by id if the actor may read it."""
    result = await db.execute(scoped_select(model, actor_id).where(model.id == row_id))
    return result.scalar_one_or_none()
