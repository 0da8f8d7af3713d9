import uuid
from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.common.access import can_access_appointment
from cabinet.common.pagination import PaginatedResponse
from cabinet.common.responses import ApiResponse, ok
from cabinet.database import get_db
from cabinet.dependencies import get_current_user, get_optional_user, require_admin
from cabinet.notifications.outbox import flush_notifications
from cabinet.scheduling.models import AppointmentStatus, RendezVous
from cabinet.scheduling.schemas import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentUpdate,
    AvailableSlots,
    CreneauClose,
    CreneauResponse,
)
from cabinet.scheduling.service import (
    book_appointment,
    cancel_appointment,
    close_slots,
    delete_appointment,
    get_appointment,
    get_appointments,
    get_available_slots,
    get_creneau,
    get_creneaux,
    get_my_appointments,
    reopen_slot,
    update_appointment,
)

router = APIRouter()
creneaux_router = APIRouter()


def _appointment_to_response(appointment: RendezVous) -> AppointmentResponse:
    return AppointmentResponse.model_validate(appointment)


async def _load_appointment(db: AsyncSession, appointment_id: uuid.UUID) -> RendezVous:
    appointment = await get_appointment(db, appointment_id)
    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rendez-vous introuvable")
    return appointment


# ── Creneaux ──────────────────────────────────────────────────────────


@creneaux_router.get("/available", response_model=ApiResponse[AvailableSlots])
async def available_slots(
    db: Annotated[AsyncSession, Depends(get_db)],
    day: date = Query(alias="date"),
):
    return ok(await get_available_slots(db, day))


@creneaux_router.get("", response_model=ApiResponse[list[CreneauResponse]])
async def list_creneaux(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
    day: Optional[date] = Query(default=None, alias="date"),
    is_closed: Optional[bool] = None,
):
    creneaux = await get_creneaux(db, day, is_closed)
    return ok([CreneauResponse.model_validate(c) for c in creneaux])


@creneaux_router.post("", response_model=ApiResponse[list[CreneauResponse]], status_code=status.HTTP_201_CREATED)
async def close_creneaux(
    data: CreneauClose,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    creneaux = await close_slots(db, data.date, data.times, data.closure_reason, current_user)
    return ok(
        [CreneauResponse.model_validate(c) for c in creneaux],
        message=f"{len(creneaux)} créneau(x) fermé(s) avec succès",
    )


@creneaux_router.delete("/{creneau_id}", response_model=ApiResponse)
async def reopen_creneau(
    creneau_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    creneau = await get_creneau(db, creneau_id)
    if creneau is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Créneau introuvable")
    await reopen_slot(db, creneau)
    return ok(message="Créneau rouvert avec succès")


# ── Rendez-vous ───────────────────────────────────────────────────────


@router.post("", response_model=ApiResponse[AppointmentResponse], status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: AppointmentCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[Optional[User], Depends(get_optional_user)],
):
    appointment = await book_appointment(db, data, current_user)
    await flush_notifications(db)
    return ok(
        _appointment_to_response(appointment),
        message="Votre demande de rendez-vous a été enregistrée. Nous vous confirmerons rapidement par email.",
    )


@router.get("", response_model=ApiResponse[list[AppointmentResponse]])
async def list_my_appointments(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    appointments = await get_my_appointments(db, current_user)
    return ok([_appointment_to_response(a) for a in appointments])


@router.get("/admin", response_model=ApiResponse[PaginatedResponse])
async def list_all_appointments(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    status_filter: Optional[AppointmentStatus] = Query(default=None, alias="status"),
    day: Optional[date] = Query(default=None, alias="date"),
):
    appointments, total = await get_appointments(db, page, page_size, status_filter, day)
    items = [_appointment_to_response(a).model_dump() for a in appointments]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.get("/{appointment_id}", response_model=ApiResponse[AppointmentResponse])
async def get_appointment_detail(
    appointment_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    appointment = await _load_appointment(db, appointment_id)
    if not can_access_appointment(current_user, appointment):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé à ce rendez-vous")
    return ok(_appointment_to_response(appointment))


@router.patch("/{appointment_id}/cancel", response_model=ApiResponse[AppointmentResponse])
async def cancel_existing_appointment(
    appointment_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    appointment = await _load_appointment(db, appointment_id)
    if not can_access_appointment(current_user, appointment):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vous n'avez pas l'autorisation d'annuler ce rendez-vous",
        )
    await cancel_appointment(db, appointment, current_user)
    await flush_notifications(db)
    return ok(_appointment_to_response(appointment), message="Rendez-vous annulé avec succès")


@router.patch("/{appointment_id}", response_model=ApiResponse[AppointmentResponse])
async def update_existing_appointment(
    appointment_id: uuid.UUID,
    data: AppointmentUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    appointment = await _load_appointment(db, appointment_id)
    changes = await update_appointment(db, appointment, data)
    if changes:
        await flush_notifications(db)
    return ok(_appointment_to_response(appointment), message="Rendez-vous mis à jour avec succès")


@router.delete("/{appointment_id}", response_model=ApiResponse)
async def delete_existing_appointment(
    appointment_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    appointment = await _load_appointment(db, appointment_id)
    await delete_appointment(db, appointment)
    return ok(message="Rendez-vous supprimé")
