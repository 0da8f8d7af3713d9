import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from cabinet.auth.schemas import UserSummary
from cabinet.tasks.models import TaskPriority, TaskStatus


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    assigned_to: uuid.UUID
    dossier_id: Optional[uuid.UUID] = None
    status: TaskStatus = TaskStatus.a_faire
    priority: TaskPriority = TaskPriority.normale
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    assigned_to: Optional[uuid.UUID] = None
    dossier_id: Optional[uuid.UUID] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class TaskDossier(BaseModel):
    id: uuid.UUID
    numero: Optional[str]
    title: str

    model_config = {"from_attributes": True}


class TaskResponse(BaseModel):
    id: uuid.UUID
    title: str
    description: Optional[str]
    dossier_id: Optional[uuid.UUID]
    dossier: Optional[TaskDossier] = None
    assigned_to: uuid.UUID
    assignee: Optional[UserSummary] = None
    created_by: uuid.UUID
    creator: Optional[UserSummary] = None
    status: TaskStatus
    priority: TaskPriority
    start_date: Optional[date]
    due_date: Optional[date]
    completed_at: Optional[datetime]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
