"""Profile endpoints. Users read and edit only their own profile."""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from teamhub.api.v1.auth import CurrentUser
from teamhub.db.session import get_db_session
from teamhub.models.user import Profile
from teamhub.services.access_control import Operation, policy_for, scoped_select

router = APIRouter()
logger = structlog.get_logger()


class ProfileResponse(BaseModel):
    id: UUID
    user_id: UUID
    username: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProfileWrite(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Username cannot be blank")
        return v


async def _own_profile(db: AsyncSession, user_id: UUID) -> Profile | None:
    result = await db.execute(scoped_select(Profile, user_id))
    return result.scalar_one_or_none()


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Profile:
    profile = await _own_profile(db, current_user.id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return profile


@router.post("/", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def create_profile(
    data: ProfileWrite,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Profile:
    """Create the caller's profile when the account has none."""
    profile = Profile(user_id=current_user.id, username=data.username)
    await policy_for(Profile).enforce(db, current_user.id, Operation.INSERT, profile)

    db.add(profile)
    await db.commit()
    await db.refresh(profile)

    logger.info("Profile created", user_id=str(current_user.id))
    return profile


@router.patch("/me", response_model=ProfileResponse)
async def update_my_profile(
    data: ProfileWrite,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Profile:
    """Change the caller's username. A taken username returns 409."""
    profile = await _own_profile(db, current_user.id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")

    changes = data.model_dump()
    await policy_for(Profile).enforce(db, current_user.id, Operation.UPDATE, profile, changes)

    profile.username = data.username
    await db.commit()
    await db.refresh(profile)

    logger.info("Profile updated", user_id=str(current_user.id))
    return profile
