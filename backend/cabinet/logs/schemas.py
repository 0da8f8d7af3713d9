import uuid
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel

from cabinet.logs.models import LogAction


class LogResponse(BaseModel):
    id: uuid.UUID
    action: LogAction
    user_id: Optional[uuid.UUID]
    user_email: Optional[str]
    target_user_id: Optional[uuid.UUID]
    target_user_email: Optional[str]
    description: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    metadata: Optional[Any] = None
    timestamp: datetime


class ActionCount(BaseModel):
    action: str
    count: int


class DayCount(BaseModel):
    day: date
    count: int


class LogStats(BaseModel):
    total_actions: int
    login_count: int
    by_action: list[ActionCount]
    by_day: list[DayCount]
