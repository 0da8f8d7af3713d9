import logging
import uuid
from pathlib import Path
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.common.pagination import PaginatedResponse
from cabinet.common.responses import ApiResponse, ok
from cabinet.common.storage import CONTACT_DIR, CONTACT_MIME_TYPES, StoredFile, remove_files, save_upload
from cabinet.config import settings
from cabinet.contact.models import ContactMessage
from cabinet.contact.schemas import ContactMessageResponse, ContactMessageUpdate, ContactReceipt
from cabinet.contact.service import (
    contact_to_response,
    create_contact_message,
    get_contact_message,
    get_contact_messages,
    mark_contact_read,
    update_contact_message,
)
from cabinet.database import get_db
from cabinet.dependencies import get_user_from_header_or_query, require_admin
from cabinet.notifications.outbox import flush_notifications

logger = logging.getLogger(__name__)

router = APIRouter()

CONTACT_SENT = "Votre message a été envoyé avec succès. Nous vous répondrons dans les plus brefs délais."


async def _get_contact_or_404(db: AsyncSession, contact_id: uuid.UUID) -> ContactMessage:
    contact = await get_contact_message(db, contact_id)
    if contact is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message non trouvé")
    return contact


@router.post("", response_model=ApiResponse[ContactReceipt], status_code=status.HTTP_201_CREATED)
async def submit_contact_form(
    db: Annotated[AsyncSession, Depends(get_db)],
    name: str = Form(..., max_length=255),
    email: EmailStr = Form(...),
    subject: str = Form(..., max_length=255),
    message: str = Form(...),
    phone: Optional[str] = Form(None, max_length=50),
    documents: list[UploadFile] = File(default=[]),
):
    missing = [label for label, value in (("nom", name), ("sujet", subject), ("message", message)) if not value.strip()]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Champs requis manquants : {', '.join(missing)}",
        )
    if len(documents) > settings.contact_max_attachments:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {settings.contact_max_attachments} documents par message",
        )

    stored: list[StoredFile] = []
    try:
        for upload in documents:
            stored.append(
                await save_upload(
                    upload,
                    CONTACT_DIR,
                    allowed_types=CONTACT_MIME_TYPES,
                    max_size_mb=settings.contact_max_upload_size_mb,
                )
            )
        contact = await create_contact_message(db, name, email, subject, message, phone, stored)
    except Exception:
        remove_files([s.path for s in stored])
        raise

    logger.info("Contact message %s received with %d document(s)", contact.id, len(stored))
    await flush_notifications(db)
    return ok(ContactReceipt(id=contact.id), message=CONTACT_SENT)


@router.get("", response_model=ApiResponse[PaginatedResponse])
async def list_contact_messages(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    is_read: Optional[bool] = None,
    is_answered: Optional[bool] = None,
):
    contacts, total = await get_contact_messages(db, page, page_size, is_read, is_answered)
    items = [contact_to_response(c).model_dump() for c in contacts]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.get("/{contact_id}", response_model=ApiResponse[ContactMessageResponse])
async def get_contact_detail(
    contact_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    contact = await _get_contact_or_404(db, contact_id)
    contact = await mark_contact_read(db, contact)
    return ok(contact_to_response(contact))


@router.patch("/{contact_id}", response_model=ApiResponse[ContactMessageResponse])
async def update_contact(
    contact_id: uuid.UUID,
    data: ContactMessageUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    contact = await _get_contact_or_404(db, contact_id)
    contact = await update_contact_message(db, contact, data)
    return ok(contact_to_response(contact), message="Message mis à jour avec succès")


@router.get("/{contact_id}/document/{doc_index}")
async def download_contact_document(
    contact_id: uuid.UUID,
    doc_index: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_user_from_header_or_query)],
):
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé")

    contact = await _get_contact_or_404(db, contact_id)
    documents = contact.documents or []
    if doc_index < 0 or doc_index >= len(documents):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document non trouvé")

    document = documents[doc_index]
    if not Path(document["path"]).is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fichier non trouvé sur le serveur")
    return FileResponse(document["path"], media_type=document["mime_type"], filename=document["original_name"])
