import uuid
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.auth.service import get_user
from cabinet.common.access import is_admin
from cabinet.common.base_models import utcnow
from cabinet.common.pagination import fetch_page
from cabinet.dossiers.service import get_dossier
from cabinet.notifications.models import NotificationType
from cabinet.notifications.outbox import queue_notification
from cabinet.tasks.models import Task, TaskPriority, TaskStatus
from cabinet.tasks.schemas import TaskCreate, TaskUpdate

TASKS_LINK = "/admin/taches"

# Columns that may not be set to NULL through an update.
REQUIRED_FIELDS = ("title", "assigned_to", "status", "priority")


async def _reload(db: AsyncSession, task: Task) -> Task:
    await db.refresh(task)
    await db.refresh(task, attribute_names=["dossier", "assignee", "creator"])
    return task


async def _check_assignee(db: AsyncSession, user_id: uuid.UUID) -> User:
    assignee = await get_user(db, user_id)
    if assignee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur assigné introuvable")
    return assignee


async def _check_dossier(db: AsyncSession, dossier_id: uuid.UUID) -> None:
    if await get_dossier(db, dossier_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dossier introuvable")


async def _notify_assignee(db: AsyncSession, task: Task, type: NotificationType, title: str, message: str) -> None:
    await queue_notification(
        db,
        task.assigned_to,
        type,
        title,
        message,
        link=TASKS_LINK,
        metadata={"task_id": str(task.id)},
    )


# ── Task CRUD ─────────────────────────────────────────────────────────


async def get_tasks(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    status_filter: Optional[TaskStatus] = None,
    assigned_to: Optional[uuid.UUID] = None,
    created_by: Optional[uuid.UUID] = None,
    dossier_id: Optional[uuid.UUID] = None,
    priority: Optional[TaskPriority] = None,
) -> tuple[list[Task], int]:
    query = select(Task)
    count_query = select(func.count(Task.id))

    if status_filter:
        query = query.where(Task.status == status_filter)
        count_query = count_query.where(Task.status == status_filter)
    if assigned_to:
        query = query.where(Task.assigned_to == assigned_to)
        count_query = count_query.where(Task.assigned_to == assigned_to)
    if created_by:
        query = query.where(Task.created_by == created_by)
        count_query = count_query.where(Task.created_by == created_by)
    if dossier_id:
        query = query.where(Task.dossier_id == dossier_id)
        count_query = count_query.where(Task.dossier_id == dossier_id)
    if priority:
        query = query.where(Task.priority == priority)
        count_query = count_query.where(Task.priority == priority)

    query = query.order_by(Task.due_date.asc().nulls_last(), Task.created_at.desc())
    return await fetch_page(db, query, count_query, page, page_size)


async def get_my_tasks(
    db: AsyncSession,
    user: User,
    status_filter: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
) -> list[Task]:
    query = select(Task).where(Task.assigned_to == user.id)
    if status_filter:
        query = query.where(Task.status == status_filter)
    if priority:
        query = query.where(Task.priority == priority)
    result = await db.execute(query.order_by(Task.due_date.asc().nulls_last(), Task.created_at.desc()))
    return list(result.scalars().all())


async def get_task(db: AsyncSession, task_id: uuid.UUID) -> Optional[Task]:
    result = await db.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def create_task(db: AsyncSession, data: TaskCreate, actor: User) -> Task:
    await _check_assignee(db, data.assigned_to)
    if data.dossier_id is not None:
        await _check_dossier(db, data.dossier_id)

    task = Task(**data.model_dump(), created_by=actor.id)
    if task.status == TaskStatus.termine:
        task.completed_at = utcnow()
    db.add(task)
    await db.flush()
    await _reload(db, task)

    if task.assigned_to != actor.id:
        await _notify_assignee(
            db,
            task,
            NotificationType.task_assigned,
            "Nouvelle tâche assignée",
            f'La tâche "{task.title}" vous a été assignée par {actor.full_name}.',
        )
    return task


async def update_task(db: AsyncSession, task: Task, data: TaskUpdate, actor: User) -> dict:
    update_data = data.model_dump(exclude_unset=True)
    for field in REQUIRED_FIELDS:
        if field in update_data and update_data[field] is None:
            update_data.pop(field)

    reassigned = "assigned_to" in update_data and update_data["assigned_to"] != task.assigned_to
    if reassigned:
        if not is_admin(actor):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Seuls les administrateurs peuvent réassigner une tâche",
            )
        await _check_assignee(db, update_data["assigned_to"])
    if update_data.get("dossier_id") is not None:
        await _check_dossier(db, update_data["dossier_id"])

    changes = {}
    for field, value in update_data.items():
        old_value = getattr(task, field)
        if old_value != value:
            changes[field] = {"old": old_value, "new": value}
            setattr(task, field, value)

    if task.status == TaskStatus.termine and task.completed_at is None:
        task.completed_at = utcnow()

    if not changes:
        return changes

    await db.flush()
    await _reload(db, task)

    if reassigned and task.assigned_to != actor.id:
        await _notify_assignee(
            db,
            task,
            NotificationType.task_assigned,
            "Nouvelle tâche assignée",
            f'La tâche "{task.title}" vous a été assignée par {actor.full_name}.',
        )
    elif not reassigned and task.assigned_to != actor.id:
        await _notify_assignee(
            db,
            task,
            NotificationType.task_updated,
            "Tâche mise à jour",
            f'La tâche "{task.title}" a été modifiée par {actor.full_name}.',
        )
    return changes


async def delete_task(db: AsyncSession, task: Task) -> None:
    await db.delete(task)
    await db.flush()
