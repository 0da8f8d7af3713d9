import logging
import uuid
from pathlib import Path
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.auth.schemas import UserSummary
from cabinet.common.access import can_access_message
from cabinet.common.responses import ApiResponse, ok
from cabinet.common.storage import MESSAGES_DIR, StoredFile, remove_files, save_upload
from cabinet.config import settings
from cabinet.database import get_db
from cabinet.dependencies import get_current_user, get_user_from_header_or_query, require_admin
from cabinet.dossiers.service import get_dossier
from cabinet.messages.models import Message
from cabinet.messages.schemas import AttachmentInfo, MessageBox, MessageResponse, UnreadCount
from cabinet.messages.service import (
    archive_message,
    count_unread,
    get_directory,
    get_message,
    get_messages,
    mark_read,
    parse_recipient_ids,
    read_receipt,
    recipient_ids,
    resolve_recipients,
    send_message,
)
from cabinet.notifications.outbox import flush_notifications

logger = logging.getLogger(__name__)

router = APIRouter()


def _message_to_response(message: Message, viewer: User) -> MessageResponse:
    receipt = read_receipt(message, viewer)
    is_recipient = viewer.id in recipient_ids(message)
    return MessageResponse(
        id=message.id,
        sender=UserSummary.model_validate(message.sender),
        recipients=[UserSummary.model_validate(r.user) for r in message.recipients],
        subject=message.subject,
        body=message.body,
        dossier_id=message.dossier_id,
        attachments=[
            AttachmentInfo(index=i, original_name=a["original_name"], mime_type=a["mime_type"], size=a["size"])
            for i, a in enumerate(message.attachments or [])
        ],
        # Messages the viewer sent are always considered read.
        is_read=receipt is not None or not is_recipient,
        read_at=receipt.read_at if receipt else None,
        created_at=message.created_at,
    )


async def _get_accessible_message(db: AsyncSession, message_id: uuid.UUID, user: User) -> Message:
    message = await get_message(db, message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message introuvable")
    if not can_access_message(user, message, recipient_ids(message)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé à ce message")
    return message


@router.post("", response_model=ApiResponse[MessageResponse], status_code=status.HTTP_201_CREATED)
async def send_new_message(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    subject: str = Form(..., min_length=1, max_length=255),
    body: str = Form(..., min_length=1),
    recipients: list[str] = Form(default=[]),
    dossier_id: Optional[uuid.UUID] = Form(None),
    files: list[UploadFile] = File(default=[]),
):
    if not subject.strip() or not body.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Le sujet et le message sont requis")
    if len(files) > settings.max_message_attachments:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {settings.max_message_attachments} pièces jointes par message",
        )

    targets = await resolve_recipients(db, current_user, parse_recipient_ids(recipients))
    if dossier_id is not None and await get_dossier(db, dossier_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dossier introuvable")

    stored: list[StoredFile] = []
    try:
        for upload in files:
            stored.append(await save_upload(upload, MESSAGES_DIR, allowed_types=None))
        message = await send_message(db, current_user, targets, subject, body, stored, dossier_id)
    except Exception:
        remove_files([s.path for s in stored])
        raise

    await flush_notifications(db)
    return ok(_message_to_response(message, current_user), message="Message envoyé avec succès")


@router.get("", response_model=ApiResponse[list[MessageResponse]])
async def list_messages(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    box: MessageBox = Query(default=MessageBox.all, alias="type"),
):
    messages = await get_messages(db, current_user, box)
    return ok([_message_to_response(m, current_user) for m in messages])


@router.get("/unread-count", response_model=ApiResponse[UnreadCount])
async def unread_count(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return ok(UnreadCount(count=await count_unread(db, current_user)))


@router.get("/users", response_model=ApiResponse[list[UserSummary]])
async def message_directory(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    users = await get_directory(db)
    return ok([UserSummary.model_validate(u) for u in users if u.id != current_user.id])


@router.get("/{message_id}", response_model=ApiResponse[MessageResponse])
async def get_message_detail(
    message_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    message = await _get_accessible_message(db, message_id, current_user)
    await mark_read(db, message, current_user)
    return ok(_message_to_response(message, current_user))


@router.put("/{message_id}/read", response_model=ApiResponse[MessageResponse])
async def mark_message_read(
    message_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    message = await _get_accessible_message(db, message_id, current_user)
    await mark_read(db, message, current_user)
    return ok(_message_to_response(message, current_user), message="Message marqué comme lu")


@router.put("/{message_id}/archive", response_model=ApiResponse)
async def archive_existing_message(
    message_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    message = await _get_accessible_message(db, message_id, current_user)
    await archive_message(db, message, current_user)
    return ok(message="Message archivé")


@router.get("/{message_id}/download/{file_index}")
async def download_attachment(
    message_id: uuid.UUID,
    file_index: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_user_from_header_or_query)],
):
    message = await _get_accessible_message(db, message_id, current_user)
    attachments = message.attachments or []
    if not attachments:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Aucune pièce jointe")
    if file_index < 0 or file_index >= len(attachments):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Index de pièce jointe invalide")

    attachment = attachments[file_index]
    if not Path(attachment["path"]).is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fichier introuvable sur le serveur")
    return FileResponse(
        attachment["path"],
        media_type=attachment["mime_type"],
        filename=attachment["original_name"],
    )
