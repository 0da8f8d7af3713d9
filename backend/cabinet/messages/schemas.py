import enum
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from cabinet.auth.schemas import UserSummary


class MessageBox(str, enum.Enum):
    all = "all"
    received = "received"
    sent = "sent"
    unread = "unread"


class AttachmentInfo(BaseModel):
    index: int
    original_name: str
    mime_type: str
    size: int


class MessageResponse(BaseModel):
    id: uuid.UUID
    sender: UserSummary
    recipients: list[UserSummary]
    subject: str
    body: str
    dossier_id: Optional[uuid.UUID]
    attachments: list[AttachmentInfo]
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class UnreadCount(BaseModel):
    count: int
