import enum
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import Boolean, Date, Enum, ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cabinet.common.base_models import GUID, TimestampMixin, UUIDBase


class AppointmentStatus(str, enum.Enum):
    en_attente = "en_attente"
    confirme = "confirme"
    annule = "annule"
    termine = "termine"


ACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.en_attente, AppointmentStatus.confirme)


class AppointmentMotive(str, enum.Enum):
    consultation = "Consultation"
    dossier_administratif = "Dossier administratif"
    suivi_dossier = "Suivi de dossier"
    autre = "Autre"


class Creneau(UUIDBase, TimestampMixin):
    """A slot closed by staff. Open slots have no row."""

    __tablename__ = "creneaux"

    slot_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    slot_time: Mapped[str] = mapped_column(String(5), nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    closure_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("users.id"), nullable=True)

    __table_args__ = (UniqueConstraint("slot_date", "slot_time"),)


class RendezVous(UUIDBase, TimestampMixin):
    __tablename__ = "rendez_vous"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    dossier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("dossiers.id", ondelete="SET NULL"), nullable=True
    )
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[str] = mapped_column(String(5), nullable=False)
    motive: Mapped[AppointmentMotive] = mapped_column(
        Enum(AppointmentMotive, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus), default=AppointmentStatus.en_attente, nullable=False, index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user = relationship("User", lazy="selectin")

    __table_args__ = (
        # At most one pending or confirmed booking per slot.
        Index(
            "uq_rendez_vous_active_slot",
            "appointment_date",
            "appointment_time",
            unique=True,
            sqlite_where=text("status IN ('en_attente', 'confirme')"),
            postgresql_where=text("status IN ('en_attente', 'confirme')"),
        ),
    )
