"""Team overview aggregation for the dashboard."""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from teamhub.models import Task, Team, TeamMember
from teamhub.services.access_control import policy_for


@dataclass
class TeamOverview:
    """A visible team annotated with live counts."""

    team: Team
    member_count: int
    task_count: int
    is_owner: bool

    def to_dict(self) -> dict:
        return {
            "id": self.team.id,
            "name": self.team.name,
            "description": self.team.description,
            "owner_id": self.team.owner_id,
            "created_at": self.team.created_at,
            "updated_at": self.team.updated_at,
            "member_count": self.member_count,
            "task_count": self.task_count,
            "is_owner": self.is_owner,
        }


def _member_count(member_rows: int, owner_has_row: bool) -> int:
    # The owner counts once whether or not they hold a membership row
    return member_rows if owner_has_row else member_rows + 1


async def list_team_overviews(
    db: AsyncSession,
    actor_id: UUID,
    team_id: UUID | None = None,
) -> list[TeamOverview]:
    """Teams visible to ``actor_id`` with member and task counts.

    One statement: every count is taken from the same snapshot.
    """
    member_counts = (
        select(TeamMember.team_id, func.count().label("member_rows"))
        .group_by(TeamMember.team_id)
        .subquery()
    )
    task_counts = (
        select(Task.team_id, func.count().label("task_count"))
        .group_by(Task.team_id)
        .subquery()
    )
    owner_row = aliased(TeamMember, name="owner_row")
    owner_has_row = exists().where(
        owner_row.team_id == Team.id,
        owner_row.user_id == Team.owner_id,
    )

    query = (
        select(
            Team,
            func.coalesce(member_counts.c.member_rows, 0),
            func.coalesce(task_counts.c.task_count, 0),
            owner_has_row.label("owner_has_row"),
        )
        .outerjoin(member_counts, member_counts.c.team_id == Team.id)
        .outerjoin(task_counts, task_counts.c.team_id == Team.id)
        .where(policy_for(Team).select_clause(actor_id))
        .order_by(Team.created_at.desc(), Team.name)
    )
    if team_id is not None:
        query = query.where(Team.id == team_id)

    result = await db.execute(query)
    return [
        TeamOverview(
            team=team,
            member_count=_member_count(member_rows, bool(has_row)),
            task_count=task_count,
            is_owner=team.owner_id == actor_id,
        )
        for team, member_rows, task_count, has_row in result.all()
    ]


async def get_team_overview(db: AsyncSession, actor_id: UUID, team_id: UUID) -> TeamOverview | None:
    overviews = await list_team_overviews(db, actor_id, team_id=team_id)
    return overviews[0] if overviews else None
