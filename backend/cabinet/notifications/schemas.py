import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from cabinet.notifications.models import NotificationType


class NotificationResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    link: Optional[str]
    metadata: Optional[Any] = None
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class UnreadNotifications(BaseModel):
    count: int
    items: list[NotificationResponse]
