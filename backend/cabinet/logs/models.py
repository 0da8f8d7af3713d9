import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from cabinet.common.base_models import GUID, UUIDBase, utcnow


class LogAction(str, enum.Enum):
    login = "login"
    register = "register"
    forgot_password = "forgot_password"
    password_changed = "password_changed"
    profile_updated = "profile_updated"
    impersonation_started = "impersonation_started"
    user_created = "user_created"
    user_updated = "user_updated"
    user_deactivated = "user_deactivated"
    dossier_created = "dossier_created"
    dossier_updated = "dossier_updated"
    dossier_deleted = "dossier_deleted"
    document_uploaded = "document_uploaded"
    document_deleted = "document_deleted"


class ActivityLog(UUIDBase):
    """Append-only record of notable actions. No update or delete route exists."""

    __tablename__ = "activity_logs"

    action: Mapped[LogAction] = mapped_column(Enum(LogAction, native_enum=False, length=50), nullable=False, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True, index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    target_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True, index=True)
    target_user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), default=utcnow, nullable=False, index=True
    )
