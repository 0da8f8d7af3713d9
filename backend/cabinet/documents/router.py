import logging
import uuid
from pathlib import Path
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.common.access import can_access_document, can_access_dossier
from cabinet.common.pagination import PaginatedResponse
from cabinet.common.responses import ApiResponse, ok
from cabinet.common.storage import DOCUMENTS_DIR, remove_file, save_upload
from cabinet.database import get_db
from cabinet.dependencies import get_current_user, get_user_from_header_or_query, require_admin
from cabinet.documents.models import Document
from cabinet.documents.schemas import DocumentResponse
from cabinet.documents.service import create_document, delete_document, get_document, get_documents
from cabinet.dossiers.service import get_dossier
from cabinet.logs.models import LogAction
from cabinet.logs.service import record_log

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_accessible_document(db: AsyncSession, document_id: uuid.UUID, user: User) -> Document:
    doc = await get_document(db, document_id)
    if doc is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document introuvable")
    if not can_access_document(user, doc):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé à ce document")
    return doc


def _file_response(doc: Document, disposition: str) -> FileResponse:
    if not Path(doc.stored_path).is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fichier introuvable sur le serveur")
    return FileResponse(
        doc.stored_path,
        media_type=doc.mime_type,
        filename=doc.original_filename,
        content_disposition_type=disposition,
    )


@router.get("", response_model=ApiResponse[PaginatedResponse])
async def list_my_documents(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
    dossier_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
):
    docs, total = await get_documents(db, page, page_size, current_user.id, dossier_id, search)
    items = [DocumentResponse.model_validate(d).model_dump() for d in docs]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.get("/admin", response_model=ApiResponse[PaginatedResponse])
async def list_all_documents(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
    owner_id: Optional[uuid.UUID] = None,
    dossier_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
):
    docs, total = await get_documents(db, page, page_size, owner_id, dossier_id, search)
    items = [DocumentResponse.model_validate(d).model_dump() for d in docs]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


@router.post("", response_model=ApiResponse[DocumentResponse], status_code=status.HTTP_201_CREATED)
async def upload_new_document(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    dossier_id: Optional[uuid.UUID] = Form(None),
):
    if dossier_id is not None:
        dossier = await get_dossier(db, dossier_id)
        if dossier is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dossier introuvable")
        if not can_access_dossier(current_user, dossier):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé à ce dossier")

    stored = await save_upload(file, DOCUMENTS_DIR)
    try:
        doc = await create_document(db, current_user.id, stored, name, description, category, dossier_id)
    except SQLAlchemyError:
        remove_file(stored.path)
        raise

    await record_log(
        db,
        LogAction.document_uploaded,
        user=current_user,
        description=f"Téléversement du document {doc.name}",
        request=request,
        metadata={"document_id": str(doc.id), "filename": doc.original_filename, "size": doc.size_bytes},
    )
    return ok(DocumentResponse.model_validate(doc), message="Document téléversé avec succès")


@router.get("/{document_id}/preview")
async def preview_document(
    document_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_user_from_header_or_query)],
):
    doc = await _get_accessible_document(db, document_id, current_user)
    return _file_response(doc, "inline")


@router.get("/{document_id}/download")
async def download_document(
    document_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_user_from_header_or_query)],
):
    doc = await _get_accessible_document(db, document_id, current_user)
    return _file_response(doc, "attachment")


@router.delete("/{document_id}", response_model=ApiResponse)
async def delete_existing_document(
    document_id: uuid.UUID,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    doc = await _get_accessible_document(db, document_id, current_user)
    name, owner = doc.name, doc.owner
    path = await delete_document(db, doc)
    await record_log(
        db,
        LogAction.document_deleted,
        user=current_user,
        target_user=owner,
        description=f"Suppression du document {name}",
        request=request,
        metadata={"document_id": str(document_id), "filename": name},
    )
    remove_file(path)
    return ok(message="Document supprimé")
