import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.common.access import can_access_task
from cabinet.common.pagination import PaginatedResponse
from cabinet.common.responses import ApiResponse, ok
from cabinet.database import get_db
from cabinet.dependencies import get_current_user, require_admin
from cabinet.notifications.outbox import flush_notifications
from cabinet.tasks.models import Task, TaskPriority, TaskStatus
from cabinet.tasks.schemas import TaskCreate, TaskResponse, TaskUpdate
from cabinet.tasks.service import create_task, delete_task, get_my_tasks, get_task, get_tasks, update_task

router = APIRouter()


def _task_to_response(task: Task) -> TaskResponse:
    return TaskResponse.model_validate(task)


async def _get_accessible_task(db: AsyncSession, task_id: uuid.UUID, user: User) -> Task:
    task = await get_task(db, task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tâche introuvable")
    if not can_access_task(user, task):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Vous n'avez pas accès à cette tâche")
    return task


@router.get("", response_model=ApiResponse[PaginatedResponse])
async def list_tasks(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
    status_filter: Optional[TaskStatus] = Query(default=None, alias="status"),
    assigned_to: Optional[uuid.UUID] = None,
    created_by: Optional[uuid.UUID] = None,
    dossier_id: Optional[uuid.UUID] = None,
    priority: Optional[TaskPriority] = None,
):
    tasks, total = await get_tasks(db, page, page_size, status_filter, assigned_to, created_by, dossier_id, priority)
    items = [_task_to_response(t).model_dump() for t in tasks]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.get("/my", response_model=ApiResponse[list[TaskResponse]])
async def list_my_tasks(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    status_filter: Optional[TaskStatus] = Query(default=None, alias="status"),
    priority: Optional[TaskPriority] = None,
):
    tasks = await get_my_tasks(db, current_user, status_filter, priority)
    return ok([_task_to_response(t) for t in tasks])


@router.get("/{task_id}", response_model=ApiResponse[TaskResponse])
async def get_task_detail(
    task_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    task = await _get_accessible_task(db, task_id, current_user)
    return ok(_task_to_response(task))


@router.post("", response_model=ApiResponse[TaskResponse], status_code=status.HTTP_201_CREATED)
async def create_new_task(
    data: TaskCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    task = await create_task(db, data, current_user)
    await flush_notifications(db)
    return ok(_task_to_response(task), message="Tâche créée avec succès")


@router.put("/{task_id}", response_model=ApiResponse[TaskResponse])
async def update_existing_task(
    task_id: uuid.UUID,
    data: TaskUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    task = await _get_accessible_task(db, task_id, current_user)
    changes = await update_task(db, task, data, current_user)
    if changes:
        await flush_notifications(db)
    return ok(_task_to_response(task), message="Tâche mise à jour avec succès")


@router.delete("/{task_id}", response_model=ApiResponse)
async def delete_existing_task(
    task_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    task = await get_task(db, task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tâche introuvable")
    await delete_task(db, task)
    return ok(message="Tâche supprimée avec succès")
