import uuid
from datetime import date, datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, EmailStr, Field, field_validator

from cabinet.auth.schemas import UserSummary
from cabinet.dossiers.models import DossierCategory, DossierPriority
from cabinet.dossiers.ownership import OwnerKind
from cabinet.dossiers.statuses import LEGACY_STATUSES, DossierStatus


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Form clients send "" for an empty select.
BlankStr = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
BlankUUID = Annotated[Optional[uuid.UUID], BeforeValidator(_blank_to_none)]
BlankEmail = Annotated[Optional[EmailStr], BeforeValidator(_blank_to_none)]


class DossierCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    category: DossierCategory = DossierCategory.autre
    case_type: Optional[str] = Field(default=None, max_length=100)
    priority: DossierPriority = DossierPriority.normale
    due_date: Optional[date] = None
    notes: Optional[str] = None

    # Owner: either an existing account or an anonymous contact
    user_id: BlankUUID = None
    client_last_name: BlankStr = Field(default=None, max_length=100)
    client_first_name: BlankStr = Field(default=None, max_length=100)
    client_email: BlankEmail = None
    client_phone: BlankStr = Field(default=None, max_length=50)

    assigned_to: BlankUUID = None

    @property
    def has_contact(self) -> bool:
        return bool(self.client_last_name and self.client_first_name and self.client_email)


class DossierUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[DossierCategory] = None
    case_type: Optional[str] = Field(default=None, max_length=100)
    priority: Optional[DossierPriority] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None

    status: Optional[DossierStatus] = None
    refusal_reason: Optional[str] = None
    notification_message: Optional[str] = Field(default=None, max_length=2000)
    # Admin correction: skip the transition table for this status change.
    force: bool = False

    # An explicit null or "" clears the assignment.
    assigned_to: BlankUUID = None

    @field_validator("status")
    @classmethod
    def reject_legacy_status(cls, value: Optional[DossierStatus]) -> Optional[DossierStatus]:
        if value in LEGACY_STATUSES:
            raise ValueError("Ce statut n'est plus utilisé")
        return value


class DossierRefuse(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)
    notification_message: Optional[str] = Field(default=None, max_length=2000)


class DossierResponse(BaseModel):
    id: uuid.UUID
    numero: Optional[str]
    title: str
    description: Optional[str]
    category: DossierCategory
    case_type: Optional[str]
    status: DossierStatus
    status_label: str
    priority: DossierPriority
    due_date: Optional[date]
    notes: Optional[str]
    refusal_reason: Optional[str]

    owner_kind: OwnerKind
    user_id: Optional[uuid.UUID]
    user: Optional[UserSummary] = None
    client_last_name: Optional[str]
    client_first_name: Optional[str]
    client_email: Optional[str]
    client_phone: Optional[str]

    created_by: Optional[uuid.UUID]
    assigned_to: Optional[uuid.UUID]
    assignee: Optional[UserSummary] = None

    created_at: datetime
    updated_at: datetime
