import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from cabinet.auth.models import Sex, UserRole


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    phone: Optional[str] = Field(default=None, max_length=50)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)
    role: UserRole = UserRole.client


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)
    birth_date: Optional[date] = None
    birth_place: Optional[str] = Field(default=None, max_length=150)
    nationality: Optional[str] = Field(default=None, max_length=100)
    sex: Optional[Sex] = None
    foreigner_number: Optional[str] = Field(default=None, max_length=50)
    permit_number: Optional[str] = Field(default=None, max_length=50)
    permit_type: Optional[str] = Field(default=None, max_length=100)
    permit_issued_on: Optional[date] = None
    permit_expires_on: Optional[date] = None
    postal_address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=100)
    postal_code: Optional[str] = Field(default=None, max_length=20)
    country: Optional[str] = Field(default=None, max_length=100)


class UserUpdate(ProfileUpdate):
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    phone: Optional[str]
    role: UserRole
    is_active: bool
    profile_complete: bool
    birth_date: Optional[date]
    birth_place: Optional[str]
    nationality: Optional[str]
    sex: Optional[Sex]
    foreigner_number: Optional[str]
    permit_number: Optional[str]
    permit_type: Optional[str]
    permit_issued_on: Optional[date]
    permit_expires_on: Optional[date]
    postal_address: Optional[str]
    city: Optional[str]
    postal_code: Optional[str]
    country: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class ImpersonationResponse(TokenResponse):
    impersonator_id: uuid.UUID


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6, max_length=128)
