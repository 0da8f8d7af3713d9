import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cabinet.common.base_models import GUID, TimestampMixin, UUIDBase


class NotificationType(str, enum.Enum):
    dossier_created = "dossier_created"
    dossier_updated = "dossier_updated"
    dossier_status_changed = "dossier_status_changed"
    dossier_assigned = "dossier_assigned"
    dossier_deleted = "dossier_deleted"
    task_assigned = "task_assigned"
    task_updated = "task_updated"
    appointment_created = "appointment_created"
    appointment_confirmed = "appointment_confirmed"
    appointment_cancelled = "appointment_cancelled"
    appointment_updated = "appointment_updated"
    message_received = "message_received"
    system = "system"


class OutboxStatus(str, enum.Enum):
    pending = "pending"
    delivered = "delivered"
    failed = "failed"


class Notification(UUIDBase, TimestampMixin):
    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_notifications_user_unread", "user_id", "is_read"),)


class NotificationOutbox(UUIDBase, TimestampMixin):
    """Notification queued in the same transaction as the change that caused it.

    user_id has no foreign key; a row addressed to an unknown user is
    accepted here and fails at dispatch time.
    """

    __tablename__ = "notification_outbox"

    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[OutboxStatus] = mapped_column(
        Enum(OutboxStatus), nullable=False, default=OutboxStatus.pending, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notification_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
