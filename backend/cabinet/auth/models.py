import enum
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cabinet.common.base_models import TimestampMixin, UUIDBase


class UserRole(str, enum.Enum):
    client = "client"
    admin = "admin"
    superadmin = "superadmin"
    avocat = "avocat"
    assistant = "assistant"
    comptable = "comptable"
    secretaire = "secretaire"
    juriste = "juriste"
    stagiaire = "stagiaire"
    visiteur = "visiteur"


ADMIN_ROLES = (UserRole.admin, UserRole.superadmin)


class Sex(str, enum.Enum):
    M = "M"
    F = "F"
    Autre = "Autre"


class User(UUIDBase, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False, default=UserRole.client, index=True)

    # Immigration profile
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    birth_place: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    nationality: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sex: Mapped[Optional[Sex]] = mapped_column(Enum(Sex), nullable=True)
    foreigner_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    permit_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    permit_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    permit_issued_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    permit_expires_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Postal address
    postal_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False, default="France")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    profile_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
