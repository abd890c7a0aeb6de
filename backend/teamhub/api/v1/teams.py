"""Team management endpoints.

Anyone can create teams. Team creators become owners with full control.
Members can see the team, its members and its tasks; membership is managed
by the owner, except that a user may add themselves to a team.
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from teamhub.api.v1.auth import CurrentUser
from teamhub.db.session import get_db_session
from teamhub.models.team import MemberRole, Team, TeamMember
from teamhub.services.access_control import (
    Operation,
    get_visible,
    is_team_owner,
    policy_for,
    scoped_select,
)
from teamhub.services.team_overview import get_team_overview, list_team_overviews

router = APIRouter()
logger = structlog.get_logger()


# ============================================================================
# Schemas
# ============================================================================

class TeamFields(BaseModel):
    """Normalization shared by team create and update requests."""

    @field_validator("name", check_fields=False)
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Team name is required")
        return v

    @field_validator("description", check_fields=False)
    @classmethod
    def strip_description(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return v.strip() or None


class TeamCreate(TeamFields):
    """Team create request."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class TeamUpdate(TeamFields):
    """Team update request."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None


class TeamResponse(BaseModel):
    """Team with live counts."""

    id: UUID
    name: str
    description: str | None
    owner_id: UUID
    created_at: datetime
    updated_at: datetime
    member_count: int
    task_count: int
    is_owner: bool


class TeamMemberResponse(BaseModel):
    """Team member response."""

    id: UUID
    team_id: UUID
    user_id: UUID
    role: MemberRole
    invited_by: UUID | None
    joined_at: datetime

    class Config:
        from_attributes = True


class TeamMemberAdd(BaseModel):
    """Add a member, or join the team when ``user_id`` is the caller."""

    user_id: UUID
    role: MemberRole = MemberRole.MEMBER


class TeamMemberUpdate(BaseModel):
    """Update team member role."""

    role: MemberRole


# ============================================================================
# Helper functions
# ============================================================================

async def _visible_team(db: AsyncSession, team_id: UUID, user_id: UUID) -> Team:
    team = await get_visible(db, Team, user_id, team_id)
    if team is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Team not found",
        )
    return team


async def _visible_membership(
    db: AsyncSession, team_id: UUID, member_user_id: UUID, actor_id: UUID
) -> TeamMember:
    result = await db.execute(
        scoped_select(TeamMember, actor_id).where(
            TeamMember.team_id == team_id,
            TeamMember.user_id == member_user_id,
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Team member not found",
        )
    return membership


async def _team_response(db: AsyncSession, team_id: UUID, user_id: UUID) -> dict:
    overview = await get_team_overview(db, user_id, team_id)
    if overview is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Team not found",
        )
    return overview.to_dict()


# ============================================================================
# Team CRUD endpoints
# ============================================================================

@router.get("/", response_model=list[TeamResponse])
async def list_teams(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> list[dict]:
    """List teams the current user owns or belongs to, with member and task counts."""
    overviews = await list_team_overviews(db, current_user.id)
    return [overview.to_dict() for overview in overviews]


@router.post("/", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    team_data: TeamCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create a new team. Anyone can create teams.

    Creator automatically becomes the team owner and gets an ``owner``
    membership row in the same transaction.
    """
    team = Team(
        name=team_data.name,
        description=team_data.description,
        owner_id=current_user.id,
    )
    await policy_for(Team).enforce(db, current_user.id, Operation.INSERT, team)
    db.add(team)
    await db.flush()

    team_member = TeamMember(
        team_id=team.id,
        user_id=current_user.id,
        role=MemberRole.OWNER.value,
    )
    await policy_for(TeamMember).enforce(db, current_user.id, Operation.INSERT, team_member)
    db.add(team_member)
    await db.commit()

    logger.info("Team created", team_id=str(team.id), created_by=str(current_user.id))

    return await _team_response(db, team.id, current_user.id)


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(
    team_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Get team details. Requires ownership or membership."""
    return await _team_response(db, team_id, current_user.id)


@router.patch("/{team_id}", response_model=TeamResponse)
async def update_team(
    team_id: UUID,
    team_data: TeamUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Update team. Owner only."""
    team = await _visible_team(db, team_id, current_user.id)
    changes = team_data.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Team name is required",
        )
    await policy_for(Team).enforce(db, current_user.id, Operation.UPDATE, team, changes)

    for field, value in changes.items():
        setattr(team, field, value)
    await db.commit()

    logger.info("Team updated", team_id=str(team_id), updated_by=str(current_user.id))
    return await _team_response(db, team_id, current_user.id)


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    """Delete a team with all of its memberships and tasks. Owner only."""
    team = await _visible_team(db, team_id, current_user.id)
    await policy_for(Team).enforce(db, current_user.id, Operation.DELETE, team)

    await db.delete(team)
    await db.commit()

    logger.info("Team deleted", team_id=str(team_id), deleted_by=str(current_user.id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Member endpoints
# ============================================================================

@router.get("/{team_id}/members", response_model=list[TeamMemberResponse])
async def list_team_members(
    team_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> list[TeamMember]:
    """List membership rows. Empty for teams the caller cannot see."""
    result = await db.execute(
        scoped_select(TeamMember, current_user.id)
        .where(TeamMember.team_id == team_id)
        .order_by(TeamMember.joined_at)
    )
    return list(result.scalars().all())


@router.post(
    "/{team_id}/members",
    response_model=TeamMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_team_member(
    team_id: UUID,
    member_data: TeamMemberAdd,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> TeamMember:
    """Add a member (owner) or join the team (the invited user themselves)."""
    joining_self = member_data.user_id == current_user.id
    role = member_data.role
    if joining_self and not await is_team_owner(db, current_user.id, team_id):
        # Joining on your own grants no elevated role
        role = MemberRole.MEMBER
    membership = TeamMember(
        team_id=team_id,
        user_id=member_data.user_id,
        role=role.value,
        invited_by=None if joining_self else current_user.id,
    )
    await policy_for(TeamMember).enforce(db, current_user.id, Operation.INSERT, membership)

    db.add(membership)
    await db.commit()

    logger.info(
        "Team member added",
        team_id=str(team_id),
        user_id=str(member_data.user_id),
        added_by=str(current_user.id),
        self_join=joining_self,
    )
    return membership


@router.patch("/{team_id}/members/{user_id}", response_model=TeamMemberResponse)
async def update_team_member(
    team_id: UUID,
    user_id: UUID,
    member_data: TeamMemberUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> TeamMember:
    """Change a member's role. Owner only."""
    membership = await _visible_membership(db, team_id, user_id, current_user.id)
    await policy_for(TeamMember).enforce(
        db, current_user.id, Operation.UPDATE, membership, {"role": member_data.role.value}
    )

    membership.role = member_data.role.value
    await db.commit()

    logger.info(
        "Team member role updated",
        team_id=str(team_id),
        user_id=str(user_id),
        role=member_data.role.value,
    )
    return membership


@router.delete("/{team_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_team_member(
    team_id: UUID,
    user_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    """Remove a member. Owner only."""
    membership = await _visible_membership(db, team_id, user_id, current_user.id)
    await policy_for(TeamMember).enforce(db, current_user.id, Operation.DELETE, membership)

    await db.delete(membership)
    await db.commit()

    logger.info("Team member removed", team_id=str(team_id), user_id=str(user_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
