import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.auth.schemas import UserSummary
from cabinet.common.access import can_access_dossier
from cabinet.common.pagination import PaginatedResponse
from cabinet.common.responses import ApiResponse, ok
from cabinet.database import get_db
from cabinet.dependencies import get_current_user, get_optional_user, require_admin
from cabinet.dossiers.models import Dossier, DossierCategory, DossierPriority
from cabinet.dossiers.schemas import DossierCreate, DossierRefuse, DossierResponse, DossierUpdate
from cabinet.dossiers.service import (
    create_dossier,
    delete_dossier,
    get_dossier,
    get_dossiers,
    get_my_dossiers,
    refuse_dossier,
    update_dossier,
)
from cabinet.dossiers.statuses import DossierStatus, status_label
from cabinet.logs.models import LogAction
from cabinet.logs.service import record_log
from cabinet.notifications.outbox import flush_notifications

router = APIRouter()


def _dossier_to_response(dossier: Dossier) -> DossierResponse:
    return DossierResponse(
        id=dossier.id,
        numero=dossier.numero,
        title=dossier.title,
        description=dossier.description,
        category=dossier.category,
        case_type=dossier.case_type,
        status=dossier.status,
        status_label=status_label(dossier.status),
        priority=dossier.priority,
        due_date=dossier.due_date,
        notes=dossier.notes,
        refusal_reason=dossier.refusal_reason,
        owner_kind=dossier.owner_kind,
        user_id=dossier.user_id,
        user=UserSummary.model_validate(dossier.user) if dossier.user else None,
        client_last_name=dossier.client_last_name,
        client_first_name=dossier.client_first_name,
        client_email=dossier.client_email,
        client_phone=dossier.client_phone,
        created_by=dossier.created_by,
        assigned_to=dossier.assigned_to,
        assignee=UserSummary.model_validate(dossier.assignee) if dossier.assignee else None,
        created_at=dossier.created_at,
        updated_at=dossier.updated_at,
    )


async def _get_accessible_dossier(db: AsyncSession, dossier_id: uuid.UUID, user: User) -> Dossier:
    dossier = await get_dossier(db, dossier_id)
    if dossier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dossier introuvable")
    if not can_access_dossier(user, dossier):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé à ce dossier")
    return dossier


@router.post("", response_model=ApiResponse[DossierResponse], status_code=status.HTTP_201_CREATED)
async def create_new_dossier(
    data: DossierCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[Optional[User], Depends(get_optional_user)],
):
    dossier = await create_dossier(db, data, current_user)
    await record_log(
        db,
        LogAction.dossier_created,
        user=current_user,
        target_user=dossier.user,
        description=f"Création du dossier {dossier.numero}",
        request=request,
        metadata={"dossier_id": str(dossier.id), "numero": dossier.numero, "owner_kind": dossier.owner_kind.value},
    )
    await flush_notifications(db)
    return ok(_dossier_to_response(dossier), message="Dossier créé avec succès")


@router.get("", response_model=ApiResponse[PaginatedResponse])
async def list_my_dossiers(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
    status_filter: Optional[DossierStatus] = Query(default=None, alias="status"),
):
    dossiers, total = await get_my_dossiers(db, current_user, page, page_size, status_filter)
    items = [_dossier_to_response(d).model_dump() for d in dossiers]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.get("/admin", response_model=ApiResponse[PaginatedResponse])
async def list_all_dossiers(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
    status_filter: Optional[DossierStatus] = Query(default=None, alias="status"),
    case_type: Optional[str] = None,
    category: Optional[DossierCategory] = None,
    user_id: Optional[uuid.UUID] = None,
    assigned_to: Optional[uuid.UUID] = None,
    priority: Optional[DossierPriority] = None,
    search: Optional[str] = None,
):
    dossiers, total = await get_dossiers(
        db, page, page_size, status_filter, case_type, category, user_id, assigned_to, priority, search
    )
    items = [_dossier_to_response(d).model_dump() for d in dossiers]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.get("/{dossier_id}", response_model=ApiResponse[DossierResponse])
async def get_dossier_detail(
    dossier_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    dossier = await _get_accessible_dossier(db, dossier_id, current_user)
    return ok(_dossier_to_response(dossier))


@router.put("/{dossier_id}", response_model=ApiResponse[DossierResponse])
async def update_existing_dossier(
    dossier_id: uuid.UUID,
    data: DossierUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    dossier = await _get_accessible_dossier(db, dossier_id, current_user)
    changes = await update_dossier(db, dossier, data, current_user)
    if changes:
        await record_log(
            db,
            LogAction.dossier_updated,
            user=current_user,
            target_user=dossier.user,
            description=f"Modification du dossier {dossier.numero}",
            request=request,
            metadata={
                "dossier_id": str(dossier.id),
                "changes": changes,
                "forced": data.force and "status" in changes,
            },
        )
        await flush_notifications(db)
    return ok(_dossier_to_response(dossier), message="Dossier mis à jour")


@router.post("/{dossier_id}/refuse", response_model=ApiResponse[DossierResponse])
async def refuse_existing_dossier(
    dossier_id: uuid.UUID,
    data: DossierRefuse,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    dossier = await get_dossier(db, dossier_id)
    if dossier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dossier introuvable")
    old_status = dossier.status
    await refuse_dossier(db, dossier, current_user, data.reason, data.notification_message)
    await record_log(
        db,
        LogAction.dossier_updated,
        user=current_user,
        target_user=dossier.user,
        description=f"Refus du dossier {dossier.numero}",
        request=request,
        metadata={
            "dossier_id": str(dossier.id),
            "changes": {"status": {"old": old_status.value, "new": dossier.status.value}},
            "refusal_reason": dossier.refusal_reason,
        },
    )
    await flush_notifications(db)
    return ok(_dossier_to_response(dossier), message="Dossier refusé")


@router.delete("/{dossier_id}", response_model=ApiResponse)
async def delete_existing_dossier(
    dossier_id: uuid.UUID,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    dossier = await get_dossier(db, dossier_id)
    if dossier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dossier introuvable")

    numero, title, owner_user = dossier.numero, dossier.title, dossier.user
    await delete_dossier(db, dossier, current_user)
    await record_log(
        db,
        LogAction.dossier_deleted,
        user=current_user,
        target_user=owner_user,
        description=f"Suppression du dossier {numero}",
        request=request,
        metadata={"dossier_id": str(dossier_id), "numero": numero, "title": title},
    )
    await flush_notifications(db)
    return ok(message="Dossier supprimé")
