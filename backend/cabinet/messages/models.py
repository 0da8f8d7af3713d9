import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cabinet.common.base_models import GUID, TimestampMixin, UUIDBase, utcnow


class Message(UUIDBase, TimestampMixin):
    __tablename__ = "messages"

    sender_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id"), nullable=False, index=True)
    dossier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("dossiers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    # [{original_name, stored_name, path, mime_type, size}, ...]
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Relationships
    sender = relationship("User", lazy="selectin")
    recipients = relationship(
        "MessageRecipient", back_populates="message", lazy="selectin", cascade="all, delete-orphan"
    )
    reads = relationship("MessageRead", lazy="selectin", cascade="all, delete-orphan")
    archives = relationship("MessageArchive", lazy="selectin", cascade="all, delete-orphan")


class MessageRecipient(UUIDBase):
    __tablename__ = "message_recipients"
    __table_args__ = (UniqueConstraint("message_id", "user_id"),)

    message_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id"), nullable=False, index=True)

    # Relationships
    message = relationship("Message", back_populates="recipients")
    user = relationship("User", lazy="selectin")


class MessageRead(UUIDBase):
    __tablename__ = "message_reads"
    __table_args__ = (UniqueConstraint("message_id", "user_id"),)

    message_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id"), nullable=False, index=True)
    read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class MessageArchive(UUIDBase):
    __tablename__ = "message_archives"
    __table_args__ = (UniqueConstraint("message_id", "user_id"),)

    message_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id"), nullable=False, index=True)
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
