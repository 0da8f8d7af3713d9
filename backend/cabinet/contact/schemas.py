import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ContactDocumentInfo(BaseModel):
    index: int
    original_name: str
    mime_type: str
    size: int


class ContactMessageResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    phone: Optional[str]
    subject: str
    message: str
    documents: list[ContactDocumentInfo]
    is_read: bool
    is_answered: bool
    response: Optional[str]
    read_at: Optional[datetime]
    created_at: datetime


class ContactReceipt(BaseModel):
    id: uuid.UUID


class ContactMessageUpdate(BaseModel):
    is_read: Optional[bool] = None
    is_answered: Optional[bool] = None
    response: Optional[str] = None
