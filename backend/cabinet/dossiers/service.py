import logging
import uuid
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import ADMIN_ROLES, User
from cabinet.auth.service import get_user, normalize_email
from cabinet.common.access import is_admin
from cabinet.common.base_models import utcnow
from cabinet.common.pagination import fetch_page
from cabinet.dossiers.models import Dossier, DossierCategory, DossierPriority
from cabinet.dossiers.numbering import insert_with_numero
from cabinet.dossiers.ownership import (
    AnonymousOwner,
    Owner,
    RegisteredOwner,
    apply_owner,
    owner_of,
    resolve_owner_user,
)
from cabinet.dossiers.schemas import DossierCreate, DossierUpdate
from cabinet.dossiers.statuses import DossierStatus, can_transition, status_label
from cabinet.notifications.models import NotificationType
from cabinet.notifications.outbox import queue_notification

logger = logging.getLogger(__name__)

DEFAULT_REFUSAL_REASON = "Dossier refusé par l'administrateur"

# Columns that may not be set to NULL through an update.
REQUIRED_FIELDS = ("title", "category", "priority", "status")


def dossier_link(dossier: Dossier) -> str:
    return f"/client/dossiers/{dossier.id}"


async def _reload(db: AsyncSession, dossier: Dossier) -> Dossier:
    await db.refresh(dossier)
    await db.refresh(dossier, attribute_names=["user", "assignee", "creator"])
    return dossier


# ── Queries ───────────────────────────────────────────────────────────


async def get_dossier(db: AsyncSession, dossier_id: uuid.UUID) -> Optional[Dossier]:
    result = await db.execute(select(Dossier).where(Dossier.id == dossier_id))
    return result.scalar_one_or_none()


async def get_my_dossiers(
    db: AsyncSession,
    user: User,
    page: int = 1,
    page_size: int = 25,
    status_filter: Optional[DossierStatus] = None,
) -> tuple[list[Dossier], int]:
    """Dossiers registered to the user, left anonymously under their email, or assigned to them."""
    mine = or_(
        Dossier.user_id == user.id,
        func.lower(Dossier.client_email) == normalize_email(user.email),
        Dossier.assigned_to == user.id,
    )
    query = select(Dossier).where(mine)
    count_query = select(func.count(Dossier.id)).where(mine)

    if status_filter:
        query = query.where(Dossier.status == status_filter)
        count_query = count_query.where(Dossier.status == status_filter)

    return await fetch_page(db, query.order_by(Dossier.created_at.desc()), count_query, page, page_size)


async def get_dossiers(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    status_filter: Optional[DossierStatus] = None,
    case_type: Optional[str] = None,
    category: Optional[DossierCategory] = None,
    user_id: Optional[uuid.UUID] = None,
    assigned_to: Optional[uuid.UUID] = None,
    priority: Optional[DossierPriority] = None,
    search: Optional[str] = None,
) -> tuple[list[Dossier], int]:
    query = select(Dossier)
    count_query = select(func.count(Dossier.id))

    if search:
        pattern = f"%{search}%"
        search_filter = or_(
            Dossier.title.ilike(pattern),
            Dossier.numero.ilike(pattern),
            Dossier.description.ilike(pattern),
            Dossier.client_last_name.ilike(pattern),
            Dossier.client_first_name.ilike(pattern),
            Dossier.client_email.ilike(pattern),
        )
        query = query.where(search_filter)
        count_query = count_query.where(search_filter)

    if status_filter:
        query = query.where(Dossier.status == status_filter)
        count_query = count_query.where(Dossier.status == status_filter)

    if case_type:
        query = query.where(Dossier.case_type == case_type)
        count_query = count_query.where(Dossier.case_type == case_type)

    if category:
        query = query.where(Dossier.category == category)
        count_query = count_query.where(Dossier.category == category)

    if user_id:
        query = query.where(Dossier.user_id == user_id)
        count_query = count_query.where(Dossier.user_id == user_id)

    if assigned_to:
        query = query.where(Dossier.assigned_to == assigned_to)
        count_query = count_query.where(Dossier.assigned_to == assigned_to)

    if priority:
        query = query.where(Dossier.priority == priority)
        count_query = count_query.where(Dossier.priority == priority)

    return await fetch_page(db, query.order_by(Dossier.created_at.desc()), count_query, page, page_size)


# ── Owner and assignee resolution ─────────────────────────────────────


async def resolve_create_owner(db: AsyncSession, data: DossierCreate, actor: Optional[User]) -> Owner:
    if data.user_id is not None:
        if actor is None or (not is_admin(actor) and data.user_id != actor.id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Vous ne pouvez pas créer un dossier pour un autre utilisateur",
            )
        user = await get_user(db, data.user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur introuvable")
        return RegisteredOwner(user_id=user.id)

    contact = None
    if data.has_contact:
        contact = AnonymousOwner(
            last_name=data.client_last_name,
            first_name=data.client_first_name,
            email=str(data.client_email),
            phone=data.client_phone,
        )

    if actor is not None and not is_admin(actor):
        return RegisteredOwner(user_id=actor.id)
    if contact is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Le nom, le prénom et l'email du client sont requis",
        )
    return contact


async def validate_assignee(db: AsyncSession, assignee_id: uuid.UUID) -> User:
    assignee = await get_user(db, assignee_id)
    if assignee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur assigné introuvable")
    if assignee.role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Un dossier ne peut être assigné qu'à un administrateur",
        )
    return assignee


async def notify_owner(
    db: AsyncSession,
    dossier: Dossier,
    actor: Optional[User],
    type: NotificationType,
    title: str,
    message: str,
    link: Optional[str] = None,
) -> bool:
    """Queue a notification for the dossier's owner when staff acted on it."""
    if actor is None or not is_admin(actor):
        return False
    owner_user = await resolve_owner_user(db, owner_of(dossier))
    if owner_user is None or owner_user.id == actor.id:
        return False
    await queue_notification(
        db,
        owner_user.id,
        type,
        title,
        message,
        link=link,
        metadata={"dossier_id": str(dossier.id), "numero": dossier.numero},
    )
    return True


# ── Mutations ─────────────────────────────────────────────────────────


async def create_dossier(db: AsyncSession, data: DossierCreate, actor: Optional[User]) -> Dossier:
    owner = await resolve_create_owner(db, data, actor)

    assignee = None
    if data.assigned_to is not None:
        if actor is None or not is_admin(actor):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Seul un administrateur peut assigner un dossier")
        assignee = await validate_assignee(db, data.assigned_to)

    dossier = Dossier(
        title=data.title.strip(),
        description=data.description,
        category=data.category,
        case_type=data.case_type,
        priority=data.priority,
        due_date=data.due_date,
        notes=data.notes,
        status=DossierStatus.recu,
        created_by=actor.id if actor else None,
        assigned_to=assignee.id if assignee else None,
    )
    apply_owner(dossier, owner)
    await insert_with_numero(db, dossier, utcnow().date())
    await _reload(db, dossier)

    await notify_owner(
        db,
        dossier,
        actor,
        NotificationType.dossier_created,
        "Nouveau dossier créé",
        f'Un dossier "{dossier.title}" a été ouvert pour vous (réf. {dossier.numero}).',
        link=dossier_link(dossier),
    )
    return dossier


async def update_dossier(db: AsyncSession, dossier: Dossier, data: DossierUpdate, actor: User) -> dict:
    """Apply an update and queue owner notifications. Returns the {field: {"old", "new"}} diff."""
    update_data = data.model_dump(exclude_unset=True)
    notification_message = update_data.pop("notification_message", None)
    force = update_data.pop("force", False)
    for field in REQUIRED_FIELDS:
        if field in update_data and update_data[field] is None:
            update_data.pop(field)

    admin = is_admin(actor)
    for field in ("status", "refusal_reason", "assigned_to"):
        if field in update_data and update_data[field] != getattr(dossier, field) and not admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Seul un administrateur peut modifier le statut ou l'assignation",
            )

    old_status = dossier.status
    new_status = update_data.get("status")
    if new_status is not None and not force and not can_transition(old_status, new_status):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Transition de statut non autorisée : {status_label(old_status)} → {status_label(new_status)}",
        )

    assignee = None
    if update_data.get("assigned_to") is not None:
        assignee = await validate_assignee(db, update_data["assigned_to"])

    changes = {}
    for field, value in update_data.items():
        old_value = getattr(dossier, field)
        if old_value != value:
            changes[field] = {"old": old_value, "new": value}
            setattr(dossier, field, value)

    if not changes:
        return changes

    await db.flush()
    await _reload(db, dossier)

    if "status" in changes:
        label = status_label(dossier.status)
        await notify_owner(
            db,
            dossier,
            actor,
            NotificationType.dossier_status_changed,
            f"Statut du dossier modifié : {label}",
            notification_message
            or f'Le statut de votre dossier "{dossier.title}" a été modifié de "{status_label(old_status)}" à "{label}".',
            link=dossier_link(dossier),
        )

    if "assigned_to" in changes:
        if assignee is not None:
            await notify_owner(
                db,
                dossier,
                actor,
                NotificationType.dossier_assigned,
                "Dossier assigné",
                f'Votre dossier "{dossier.title}" a été assigné à {assignee.first_name} {assignee.last_name}.',
                link=dossier_link(dossier),
            )
        else:
            await notify_owner(
                db,
                dossier,
                actor,
                NotificationType.dossier_updated,
                "Assignation retirée",
                f'L\'assignation de votre dossier "{dossier.title}" a été retirée.',
                link=dossier_link(dossier),
            )

    if "status" not in changes and "assigned_to" not in changes:
        await notify_owner(
            db,
            dossier,
            actor,
            NotificationType.dossier_updated,
            "Dossier mis à jour",
            notification_message or f'Votre dossier "{dossier.title}" a été mis à jour.',
            link=dossier_link(dossier),
        )

    return changes


async def refuse_dossier(
    db: AsyncSession,
    dossier: Dossier,
    actor: User,
    reason: Optional[str] = None,
    notification_message: Optional[str] = None,
) -> Dossier:
    if dossier.status == DossierStatus.refuse:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ce dossier est déjà refusé")
    if not can_transition(dossier.status, DossierStatus.refuse):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Un dossier au statut {status_label(dossier.status)} ne peut plus être refusé",
        )

    reason = (reason or "").strip() or DEFAULT_REFUSAL_REASON
    dossier.status = DossierStatus.refuse
    dossier.refusal_reason = reason
    await db.flush()
    await _reload(db, dossier)

    await notify_owner(
        db,
        dossier,
        actor,
        NotificationType.dossier_status_changed,
        "Dossier refusé",
        notification_message or f'Votre dossier "{dossier.title}" a été refusé. Motif : {reason}',
        link=dossier_link(dossier),
    )
    return dossier


async def delete_dossier(db: AsyncSession, dossier: Dossier, actor: User) -> None:
    # The owner is resolved and notified while the row still exists.
    await notify_owner(
        db,
        dossier,
        actor,
        NotificationType.dossier_deleted,
        "Dossier supprimé",
        f'Votre dossier "{dossier.title}" ({dossier.numero}) a été supprimé.',
    )
    await db.delete(dossier)
    await db.flush()
