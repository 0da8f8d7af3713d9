import logging
import uuid
from datetime import date
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.auth.service import normalize_email
from cabinet.common.access import can_access_dossier
from cabinet.common.pagination import fetch_page
from cabinet.dossiers.service import get_dossier
from cabinet.notifications.models import NotificationType
from cabinet.notifications.outbox import queue_notification
from cabinet.scheduling.models import (
    ACTIVE_APPOINTMENT_STATUSES,
    AppointmentStatus,
    Creneau,
    RendezVous,
)
from cabinet.scheduling.schemas import AppointmentCreate, AppointmentUpdate, AvailableSlots
from cabinet.scheduling.slots import default_slot_times

logger = logging.getLogger(__name__)

SLOT_CLOSED = "Ce créneau est fermé. Veuillez choisir un autre horaire."
SLOT_TAKEN = "Ce créneau est déjà réservé. Veuillez choisir un autre horaire."
APPOINTMENTS_LINK = "/client/rendez-vous"

# Columns that may not be set to NULL through an update.
REQUIRED_FIELDS = ("status", "appointment_date", "appointment_time", "motive")

ACTIVE_SLOT_INDEX = "uq_rendez_vous_active_slot"


def fr_date(day: date) -> str:
    return day.strftime("%d/%m/%Y")


async def _reload(db: AsyncSession, appointment: RendezVous) -> RendezVous:
    await db.refresh(appointment)
    await db.refresh(appointment, attribute_names=["user"])
    return appointment


# ── Creneaux ──────────────────────────────────────────────────────────


async def get_creneau(db: AsyncSession, creneau_id: uuid.UUID) -> Optional[Creneau]:
    result = await db.execute(select(Creneau).where(Creneau.id == creneau_id))
    return result.scalar_one_or_none()


async def get_creneaux(
    db: AsyncSession, day: Optional[date] = None, is_closed: Optional[bool] = None
) -> list[Creneau]:
    query = select(Creneau)
    if day:
        query = query.where(Creneau.slot_date == day)
    if is_closed is not None:
        query = query.where(Creneau.is_closed.is_(is_closed))
    result = await db.execute(query.order_by(Creneau.slot_date, Creneau.slot_time))
    return list(result.scalars().all())


async def _find_creneau(db: AsyncSession, day: date, slot_time: str) -> Optional[Creneau]:
    result = await db.execute(select(Creneau).where(Creneau.slot_date == day, Creneau.slot_time == slot_time))
    return result.scalar_one_or_none()


async def close_slots(
    db: AsyncSession, day: date, times: list[str], reason: Optional[str], actor: User
) -> list[Creneau]:
    """Close each (day, time) slot, reusing the row when one already exists."""
    closed = []
    for slot_time in times:
        creneau = await _find_creneau(db, day, slot_time)
        if creneau is None:
            creneau = Creneau(
                slot_date=day, slot_time=slot_time, is_closed=True, closure_reason=reason, created_by=actor.id
            )
            try:
                async with db.begin_nested():
                    db.add(creneau)
                    await db.flush()
            except IntegrityError:
                # Closed concurrently; fall through to update the winner's row.
                creneau = await _find_creneau(db, day, slot_time)
                if creneau is None:
                    raise
        creneau.is_closed = True
        if reason:
            creneau.closure_reason = reason
        closed.append(creneau)
    await db.flush()
    return closed


async def reopen_slot(db: AsyncSession, creneau: Creneau) -> None:
    await db.delete(creneau)
    await db.flush()


async def _closed_times(db: AsyncSession, day: date) -> set[str]:
    result = await db.execute(
        select(Creneau.slot_time).where(Creneau.slot_date == day, Creneau.is_closed.is_(True))
    )
    return set(result.scalars().all())


async def _booked_times(db: AsyncSession, day: date) -> set[str]:
    result = await db.execute(
        select(RendezVous.appointment_time).where(
            RendezVous.appointment_date == day, RendezVous.status.in_(ACTIVE_APPOINTMENT_STATUSES)
        )
    )
    return set(result.scalars().all())


async def get_available_slots(db: AsyncSession, day: date) -> AvailableSlots:
    unavailable = await _closed_times(db, day) | await _booked_times(db, day)
    return AvailableSlots(
        date=day,
        available_hours=[t for t in default_slot_times() if t not in unavailable],
        unavailable_hours=sorted(unavailable),
    )


# ── Rendez-vous ───────────────────────────────────────────────────────


async def check_slot(
    db: AsyncSession, day: date, slot_time: str, exclude_id: Optional[uuid.UUID] = None
) -> None:
    """Raise 400 when the slot is closed or already held by an active booking."""
    if slot_time in await _closed_times(db, day):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=SLOT_CLOSED)

    query = select(RendezVous.id).where(
        RendezVous.appointment_date == day,
        RendezVous.appointment_time == slot_time,
        RendezVous.status.in_(ACTIVE_APPOINTMENT_STATUSES),
    )
    if exclude_id is not None:
        query = query.where(RendezVous.id != exclude_id)
    if (await db.execute(query.limit(1))).scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=SLOT_TAKEN)


def _is_slot_conflict(exc: IntegrityError) -> bool:
    # PostgreSQL names the index; SQLite only lists its columns.
    message = str(exc.orig)
    if ACTIVE_SLOT_INDEX in message:
        return True
    return "UNIQUE constraint failed: rendez_vous.appointment_date, rendez_vous.appointment_time" in message


async def _flush_slot(db: AsyncSession, appointment: RendezVous) -> None:
    # The partial unique index settles races the pre-check cannot see.
    try:
        async with db.begin_nested():
            db.add(appointment)
            await db.flush()
    except IntegrityError as exc:
        if _is_slot_conflict(exc):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=SLOT_TAKEN)
        raise


async def _check_linked_dossier(db: AsyncSession, dossier_id: uuid.UUID, actor: Optional[User]) -> None:
    dossier = await get_dossier(db, dossier_id)
    if dossier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dossier introuvable")
    if actor is None or not can_access_dossier(actor, dossier):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé à ce dossier")


async def get_appointment(db: AsyncSession, appointment_id: uuid.UUID) -> Optional[RendezVous]:
    result = await db.execute(select(RendezVous).where(RendezVous.id == appointment_id))
    return result.scalar_one_or_none()


async def get_my_appointments(db: AsyncSession, user: User) -> list[RendezVous]:
    mine = or_(
        RendezVous.user_id == user.id,
        and_(RendezVous.user_id.is_(None), func.lower(RendezVous.email) == normalize_email(user.email)),
    )
    result = await db.execute(
        select(RendezVous)
        .where(mine)
        .order_by(RendezVous.appointment_date.desc(), RendezVous.appointment_time.desc())
    )
    return list(result.scalars().all())


async def get_appointments(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    status_filter: Optional[AppointmentStatus] = None,
    day: Optional[date] = None,
) -> tuple[list[RendezVous], int]:
    query = select(RendezVous)
    count_query = select(func.count(RendezVous.id))

    if status_filter:
        query = query.where(RendezVous.status == status_filter)
        count_query = count_query.where(RendezVous.status == status_filter)

    if day:
        query = query.where(RendezVous.appointment_date == day)
        count_query = count_query.where(RendezVous.appointment_date == day)

    query = query.order_by(RendezVous.appointment_date.asc(), RendezVous.appointment_time.asc())
    return await fetch_page(db, query, count_query, page, page_size)


async def _notify_booker(
    db: AsyncSession, appointment: RendezVous, type: NotificationType, title: str, message: str, **metadata
) -> None:
    if appointment.user_id is None:
        return
    await queue_notification(
        db,
        appointment.user_id,
        type,
        title,
        message,
        link=APPOINTMENTS_LINK,
        metadata={
            "appointment_id": str(appointment.id),
            "date": appointment.appointment_date.isoformat(),
            "time": appointment.appointment_time,
            **metadata,
        },
    )


async def book_appointment(db: AsyncSession, data: AppointmentCreate, actor: Optional[User]) -> RendezVous:
    if data.dossier_id is not None:
        await _check_linked_dossier(db, data.dossier_id, actor)
    await check_slot(db, data.appointment_date, data.appointment_time)

    appointment = RendezVous(
        user_id=actor.id if actor else None,
        dossier_id=data.dossier_id,
        last_name=data.last_name.strip(),
        first_name=data.first_name.strip(),
        email=normalize_email(data.email),
        phone=data.phone.strip(),
        appointment_date=data.appointment_date,
        appointment_time=data.appointment_time,
        motive=data.motive,
        description=data.description,
        status=AppointmentStatus.en_attente,
    )
    await _flush_slot(db, appointment)
    await _reload(db, appointment)

    await _notify_booker(
        db,
        appointment,
        NotificationType.appointment_created,
        "Demande de rendez-vous enregistrée",
        f"Votre demande de rendez-vous du {fr_date(appointment.appointment_date)} à "
        f"{appointment.appointment_time} a été enregistrée.",
    )
    return appointment


async def cancel_appointment(db: AsyncSession, appointment: RendezVous, actor: User) -> RendezVous:
    if appointment.status == AppointmentStatus.annule:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ce rendez-vous est déjà annulé")
    if appointment.status == AppointmentStatus.termine:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Impossible d'annuler un rendez-vous déjà terminé"
        )

    old_status = appointment.status
    appointment.status = AppointmentStatus.annule
    await db.flush()
    await _reload(db, appointment)

    when = f"{fr_date(appointment.appointment_date)} à {appointment.appointment_time}"
    if appointment.user_id == actor.id:
        message = f"Vous avez annulé votre rendez-vous du {when}."
    else:
        message = f"Votre rendez-vous du {when} a été annulé."
    await _notify_booker(
        db,
        appointment,
        NotificationType.appointment_cancelled,
        "Rendez-vous annulé",
        message,
        old_status=old_status.value,
        new_status=AppointmentStatus.annule.value,
    )
    return appointment


async def update_appointment(db: AsyncSession, appointment: RendezVous, data: AppointmentUpdate) -> dict:
    update_data = data.model_dump(exclude_unset=True)
    for field in REQUIRED_FIELDS:
        if field in update_data and update_data[field] is None:
            update_data.pop(field)

    changes = {}
    for field, value in update_data.items():
        old_value = getattr(appointment, field)
        if old_value != value:
            changes[field] = {"old": old_value, "new": value}

    if not changes:
        return changes

    old_status = appointment.status
    new_status = update_data.get("status", old_status)
    new_date = update_data.get("appointment_date", appointment.appointment_date)
    new_time = update_data.get("appointment_time", appointment.appointment_time)
    moved = "appointment_date" in changes or "appointment_time" in changes
    reactivated = old_status not in ACTIVE_APPOINTMENT_STATUSES and new_status in ACTIVE_APPOINTMENT_STATUSES
    if new_status in ACTIVE_APPOINTMENT_STATUSES and (moved or reactivated):
        await check_slot(db, new_date, new_time, exclude_id=appointment.id)

    for field, change in changes.items():
        setattr(appointment, field, change["new"])
    await _flush_slot(db, appointment)
    await _reload(db, appointment)

    when = f"{fr_date(appointment.appointment_date)} à {appointment.appointment_time}"
    if "status" in changes:
        if appointment.status == AppointmentStatus.confirme:
            kind, title = NotificationType.appointment_confirmed, "Rendez-vous confirmé"
            message = f"Votre rendez-vous du {when} a été confirmé."
        elif appointment.status == AppointmentStatus.annule:
            kind, title = NotificationType.appointment_cancelled, "Rendez-vous annulé"
            message = f"Votre rendez-vous du {when} a été annulé."
        else:
            kind, title = NotificationType.appointment_updated, "Rendez-vous modifié"
            message = (
                f'Le statut de votre rendez-vous a été modifié de "{old_status.value}" à "{appointment.status.value}".'
            )
    elif moved:
        kind, title = NotificationType.appointment_updated, "Rendez-vous reprogrammé"
        message = f"Votre rendez-vous a été reprogrammé. Nouvelle date : {when}."
    else:
        kind, title = NotificationType.appointment_updated, "Rendez-vous modifié"
        message = f"Votre rendez-vous du {when} a été modifié par l'administrateur."

    await _notify_booker(
        db,
        appointment,
        kind,
        title,
        message,
        old_status=old_status.value,
        new_status=appointment.status.value,
    )
    return changes


async def delete_appointment(db: AsyncSession, appointment: RendezVous) -> None:
    await db.delete(appointment)
    await db.flush()
