import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.common.pagination import PaginatedResponse
from cabinet.common.responses import ApiResponse, ok
from cabinet.database import get_db
from cabinet.dependencies import get_current_user
from cabinet.notifications.schemas import NotificationResponse, UnreadNotifications
from cabinet.notifications.service import (
    delete_notification,
    get_notifications,
    get_unread,
    get_user_notification,
    mark_all_read,
    mark_read,
    notification_to_response,
)

router = APIRouter()


@router.get("", response_model=ApiResponse[PaginatedResponse])
async def list_notifications(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
    unread_only: bool = False,
):
    notifications, total = await get_notifications(db, current_user.id, page, page_size, unread_only)
    items = [notification_to_response(n).model_dump() for n in notifications]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.get("/unread", response_model=ApiResponse[UnreadNotifications])
async def list_unread(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    notifications, count = await get_unread(db, current_user.id)
    return ok(UnreadNotifications(count=count, items=[notification_to_response(n) for n in notifications]))


@router.put("/read-all", response_model=ApiResponse)
async def read_all(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    updated = await mark_all_read(db, current_user.id)
    return ok({"updated": updated}, message="Toutes les notifications ont été marquées comme lues")


@router.put("/{notification_id}/read", response_model=ApiResponse[NotificationResponse])
async def read_notification(
    notification_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    notification = await get_user_notification(db, notification_id, current_user.id)
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification introuvable")
    await mark_read(db, notification)
    return ok(notification_to_response(notification))


@router.delete("/{notification_id}", response_model=ApiResponse)
async def remove_notification(
    notification_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    notification = await get_user_notification(db, notification_id, current_user.id)
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification introuvable")
    await delete_notification(db, notification)
    return ok(message="Notification supprimée")
