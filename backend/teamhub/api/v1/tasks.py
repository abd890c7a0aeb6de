"""Task management endpoints.

Every team member can read, create and edit the team's tasks. Deleting a
task is reserved for the team owner.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from teamhub.api.v1.auth import CurrentUser
from teamhub.db.session import get_db_session
from teamhub.models.task import Task, TaskPriority, TaskStatus
from teamhub.services.access_control import Operation, get_visible, policy_for, scoped_select

router = APIRouter()
logger = structlog.get_logger()


# ============================================================================
# Schemas
# ============================================================================

class TaskCreate(BaseModel):
    """Task create request."""

    team_id: UUID
    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None
    assigned_to: UUID | None = None
    # Defaults to the caller; any other value is rejected
    created_by: UUID | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Task title is required")
        return v


class TaskUpdate(BaseModel):
    """Task update request. ``team_id`` and ``created_by`` are fixed."""

    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None
    assigned_to: UUID | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Task title is required")
        return v


class TaskResponse(BaseModel):
    """Task response."""

    id: UUID
    team_id: UUID
    title: str
    description: str | None
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime | None
    assigned_to: UUID | None
    created_by: UUID
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# Helper functions
# ============================================================================

async def _visible_task(db: AsyncSession, task_id: UUID, user_id: UUID) -> Task:
    task = await get_visible(db, Task, user_id, task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found",
        )
    return task


def _column_values(changes: dict[str, Any]) -> dict[str, Any]:
    return {
        field: value.value if isinstance(value, (TaskStatus, TaskPriority)) else value
        for field, value in changes.items()
    }


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/", response_model=list[TaskResponse])
async def list_tasks(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
    team_id: UUID | None = None,
    status_filter: TaskStatus | None = Query(None, alias="status"),
    priority: TaskPriority | None = None,
    assigned_to: UUID | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> list[Task]:
    """List tasks from every team the caller can see."""
    query = scoped_select(Task, current_user.id)
    if team_id is not None:
        query = query.where(Task.team_id == team_id)
    if status_filter is not None:
        query = query.where(Task.status == status_filter.value)
    if priority is not None:
        query = query.where(Task.priority == priority.value)
    if assigned_to is not None:
        query = query.where(Task.assigned_to == assigned_to)

    query = query.order_by(Task.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Task:
    """Create a task in a team the caller owns or belongs to."""
    task = Task(
        team_id=task_data.team_id,
        title=task_data.title,
        description=task_data.description,
        status=task_data.status.value,
        priority=task_data.priority.value,
        due_date=task_data.due_date,
        assigned_to=task_data.assigned_to,
        created_by=task_data.created_by or current_user.id,
    )
    await policy_for(Task).enforce(db, current_user.id, Operation.INSERT, task)

    db.add(task)
    await db.commit()

    logger.info(
        "Task created",
        task_id=str(task.id),
        team_id=str(task.team_id),
        created_by=str(current_user.id),
    )
    return task


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Task:
    """Get a single task."""
    return await _visible_task(db, task_id, current_user.id)


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: UUID,
    task_data: TaskUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Task:
    """Update a task. Any member of its team may edit it."""
    task = await _visible_task(db, task_id, current_user.id)
    changes = _column_values(task_data.model_dump(exclude_unset=True))
    for required in ("title", "status", "priority"):
        if required in changes and changes[required] is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Task {required} cannot be null",
            )
    await policy_for(Task).enforce(db, current_user.id, Operation.UPDATE, task, changes)

    for field, value in changes.items():
        setattr(task, field, value)
    await db.commit()

    logger.info("Task updated", task_id=str(task_id), fields=sorted(changes))
    return task


@router.post("/{task_id}/advance", response_model=TaskResponse)
async def advance_task(
    task_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Task:
    """Move a task to the next board column. ``done`` stays ``done``."""
    task = await _visible_task(db, task_id, current_user.id)
    next_status = TaskStatus(task.status).next()
    await policy_for(Task).enforce(
        db, current_user.id, Operation.UPDATE, task, {"status": next_status.value}
    )

    if next_status.value != task.status:
        task.status = next_status.value
        await db.commit()
        logger.info("Task advanced", task_id=str(task_id), status=next_status.value)
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    """Delete a task. Team owner only."""
    task = await _visible_task(db, task_id, current_user.id)
    await policy_for(Task).enforce(db, current_user.id, Operation.DELETE, task)

    await db.delete(task)
    await db.commit()

    logger.info("Task deleted", task_id=str(task_id), deleted_by=str(current_user.id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
