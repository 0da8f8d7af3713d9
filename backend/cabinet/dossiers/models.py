import enum
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import CheckConstraint, Date, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cabinet.common.base_models import GUID, TimestampMixin, UUIDBase
from cabinet.database import Base
from cabinet.dossiers.ownership import OwnerKind
from cabinet.dossiers.statuses import DossierStatus


class DossierCategory(str, enum.Enum):
    sejour_titres = "sejour_titres"
    contentieux_administratif = "contentieux_administratif"
    asile = "asile"
    regroupement_familial = "regroupement_familial"
    nationalite_francaise = "nationalite_francaise"
    eloignement_urgence = "eloignement_urgence"
    autre = "autre"


class DossierPriority(str, enum.Enum):
    basse = "basse"
    normale = "normale"
    haute = "haute"
    urgente = "urgente"


class Dossier(UUIDBase, TimestampMixin):
    __tablename__ = "dossiers"

    numero: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True)

    # Ownership: see cabinet.dossiers.ownership
    owner_kind: Mapped[OwnerKind] = mapped_column(Enum(OwnerKind), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("users.id"), nullable=True, index=True
    )
    client_last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    client_first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    client_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    client_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[DossierCategory] = mapped_column(
        Enum(DossierCategory), nullable=False, default=DossierCategory.autre
    )
    case_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[DossierStatus] = mapped_column(
        Enum(DossierStatus), nullable=False, default=DossierStatus.recu, index=True
    )
    priority: Mapped[DossierPriority] = mapped_column(
        Enum(DossierPriority), nullable=False, default=DossierPriority.normale
    )
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refusal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("users.id"), nullable=True)
    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Relationships
    user = relationship("User", foreign_keys=[user_id], lazy="selectin")
    assignee = relationship("User", foreign_keys=[assigned_to], lazy="selectin")
    creator = relationship("User", foreign_keys=[created_by], lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "(owner_kind = 'registered' AND user_id IS NOT NULL AND client_last_name IS NULL"
            " AND client_first_name IS NULL AND client_email IS NULL AND client_phone IS NULL)"
            " OR (owner_kind = 'anonymous' AND user_id IS NULL AND client_last_name IS NOT NULL"
            " AND client_first_name IS NOT NULL AND client_email IS NOT NULL)",
            name="owner_xor",
        ),
    )


class DossierCounter(Base):
    """Last numero sequence handed out per calendar day."""

    __tablename__ = "dossier_counters"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
