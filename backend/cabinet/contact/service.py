import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.service import get_active_admins, normalize_email
from cabinet.common.base_models import utcnow
from cabinet.common.pagination import fetch_page
from cabinet.common.storage import StoredFile
from cabinet.contact.models import ContactMessage
from cabinet.contact.schemas import ContactDocumentInfo, ContactMessageResponse, ContactMessageUpdate
from cabinet.notifications.models import NotificationType
from cabinet.notifications.outbox import queue_notification


def contact_to_response(contact: ContactMessage) -> ContactMessageResponse:
    return ContactMessageResponse(
        id=contact.id,
        name=contact.name,
        email=contact.email,
        phone=contact.phone,
        subject=contact.subject,
        message=contact.message,
        documents=[
            ContactDocumentInfo(index=i, original_name=d["original_name"], mime_type=d["mime_type"], size=d["size"])
            for i, d in enumerate(contact.documents or [])
        ],
        is_read=contact.is_read,
        is_answered=contact.is_answered,
        response=contact.response,
        read_at=contact.read_at,
        created_at=contact.created_at,
    )


async def get_contact_messages(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 50,
    is_read: Optional[bool] = None,
    is_answered: Optional[bool] = None,
) -> tuple[list[ContactMessage], int]:
    query = select(ContactMessage)
    count_query = select(func.count(ContactMessage.id))

    if is_read is not None:
        query = query.where(ContactMessage.is_read.is_(is_read))
        count_query = count_query.where(ContactMessage.is_read.is_(is_read))

    if is_answered is not None:
        query = query.where(ContactMessage.is_answered.is_(is_answered))
        count_query = count_query.where(ContactMessage.is_answered.is_(is_answered))

    return await fetch_page(db, query.order_by(ContactMessage.created_at.desc()), count_query, page, page_size)


async def get_contact_message(db: AsyncSession, contact_id: uuid.UUID) -> Optional[ContactMessage]:
    result = await db.execute(select(ContactMessage).where(ContactMessage.id == contact_id))
    return result.scalar_one_or_none()


async def create_contact_message(
    db: AsyncSession,
    name: str,
    email: str,
    subject: str,
    message: str,
    phone: Optional[str],
    documents: list[StoredFile],
) -> ContactMessage:
    """Store the message and queue a notification for every active admin."""
    contact = ContactMessage(
        name=name.strip(),
        email=normalize_email(email),
        phone=(phone or "").strip() or None,
        subject=subject.strip(),
        message=message.strip(),
        documents=[d.to_dict() for d in documents],
        is_read=False,
        is_answered=False,
    )
    db.add(contact)
    await db.flush()
    await db.refresh(contact)

    for admin in await get_active_admins(db):
        await queue_notification(
            db,
            admin.id,
            NotificationType.message_received,
            "Nouveau message de contact",
            f'Nouveau message de {contact.name} ({contact.email}) : "{contact.subject}"',
            link=f"/admin/messages/{contact.id}",
            metadata={"message_id": str(contact.id), "email": contact.email, "subject": contact.subject},
        )
    return contact


async def mark_contact_read(db: AsyncSession, contact: ContactMessage) -> ContactMessage:
    if not contact.is_read:
        contact.is_read = True
        contact.read_at = utcnow()
        await db.flush()
        await db.refresh(contact)
    return contact


async def update_contact_message(
    db: AsyncSession, contact: ContactMessage, data: ContactMessageUpdate
) -> ContactMessage:
    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("is_read") is True and not contact.is_read:
        contact.read_at = utcnow()
    for field, value in update_data.items():
        if field in ("is_read", "is_answered") and value is None:
            continue
        setattr(contact, field, value)
    await db.flush()
    await db.refresh(contact)
    return contact
