import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from cabinet.auth.schemas import UserSummary
from cabinet.scheduling.models import AppointmentMotive, AppointmentStatus
from cabinet.scheduling.slots import normalize_time


def _check_time(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        return normalize_time(value)
    except ValueError:
        raise ValueError("Heure invalide (format attendu HH:MM)")


# ── Creneaux ──────────────────────────────────────────────────────────


class CreneauClose(BaseModel):
    date: date
    times: list[str] = Field(min_length=1)
    closure_reason: Optional[str] = Field(default=None, max_length=255)

    @field_validator("times")
    @classmethod
    def validate_times(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(_check_time(t) for t in value))


class CreneauResponse(BaseModel):
    id: uuid.UUID
    slot_date: date
    slot_time: str
    is_closed: bool
    closure_reason: Optional[str]
    created_by: Optional[uuid.UUID]
    created_at: datetime

    model_config = {"from_attributes": True}


class AvailableSlots(BaseModel):
    date: date
    available_hours: list[str]
    unavailable_hours: list[str]


# ── Rendez-vous ───────────────────────────────────────────────────────


class AppointmentCreate(BaseModel):
    last_name: str = Field(min_length=1, max_length=100)
    first_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(min_length=1, max_length=50)
    appointment_date: date
    appointment_time: str
    motive: AppointmentMotive
    description: Optional[str] = Field(default=None, max_length=500)
    dossier_id: Optional[uuid.UUID] = None

    @field_validator("appointment_time")
    @classmethod
    def validate_time(cls, value: Optional[str]) -> Optional[str]:
        return _check_time(value)


class AppointmentUpdate(BaseModel):
    status: Optional[AppointmentStatus] = None
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None
    motive: Optional[AppointmentMotive] = None
    description: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = None

    @field_validator("appointment_time")
    @classmethod
    def validate_time(cls, value: Optional[str]) -> Optional[str]:
        return _check_time(value)


class AppointmentResponse(BaseModel):
    id: uuid.UUID
    user_id: Optional[uuid.UUID]
    user: Optional[UserSummary] = None
    dossier_id: Optional[uuid.UUID]
    last_name: str
    first_name: str
    email: str
    phone: str
    appointment_date: date
    appointment_time: str
    motive: AppointmentMotive
    description: Optional[str]
    status: AppointmentStatus
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
