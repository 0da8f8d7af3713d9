import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.common.pagination import fetch_page
from cabinet.common.storage import StoredFile
from cabinet.documents.models import Document


async def get_documents(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    owner_id: Optional[uuid.UUID] = None,
    dossier_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
) -> tuple[list[Document], int]:
    query = select(Document)
    count_query = select(func.count(Document.id))

    if owner_id:
        query = query.where(Document.owner_id == owner_id)
        count_query = count_query.where(Document.owner_id == owner_id)

    if dossier_id:
        query = query.where(Document.dossier_id == dossier_id)
        count_query = count_query.where(Document.dossier_id == dossier_id)

    if search:
        query = query.where(Document.name.ilike(f"%{search}%"))
        count_query = count_query.where(Document.name.ilike(f"%{search}%"))

    return await fetch_page(db, query.order_by(Document.created_at.desc()), count_query, page, page_size)


async def get_document(db: AsyncSession, document_id: uuid.UUID) -> Optional[Document]:
    result = await db.execute(select(Document).where(Document.id == document_id))
    return result.scalar_one_or_none()


async def create_document(
    db: AsyncSession,
    owner_id: uuid.UUID,
    stored: StoredFile,
    name: Optional[str] = None,
    description: Optional[str] = None,
    category: Optional[str] = None,
    dossier_id: Optional[uuid.UUID] = None,
) -> Document:
    doc = Document(
        owner_id=owner_id,
        dossier_id=dossier_id,
        name=(name or "").strip() or stored.original_name,
        original_filename=stored.original_name,
        stored_path=stored.path,
        mime_type=stored.mime_type,
        size_bytes=stored.size,
        description=description,
        category=category,
    )
    db.add(doc)
    await db.flush()
    await db.refresh(doc)
    return doc


async def delete_document(db: AsyncSession, document: Document) -> str:
    """Delete the row and return the stored path; the caller removes the file after the row is gone."""
    path = document.stored_path
    await db.delete(document)
    await db.flush()
    return path
