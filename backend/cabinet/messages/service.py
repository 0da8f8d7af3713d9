import json
import logging
import uuid
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import exists, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User, UserRole
from cabinet.auth.service import get_active_admins
from cabinet.common.access import is_admin
from cabinet.common.storage import StoredFile
from cabinet.messages.models import Message, MessageArchive, MessageRead, MessageRecipient
from cabinet.messages.schemas import MessageBox
from cabinet.notifications.models import NotificationType
from cabinet.notifications.outbox import queue_notification

logger = logging.getLogger(__name__)

INBOX_LIMIT = 100
INVALID_RECIPIENTS = "Un ou plusieurs destinataires sont invalides"


def parse_recipient_ids(raw: Optional[list[str]]) -> list[uuid.UUID]:
    """Accept repeated form fields, a JSON array, or a mix of both."""
    values: list = []
    for item in raw or []:
        item = item.strip()
        if not item:
            continue
        if item.startswith("["):
            try:
                values.extend(json.loads(item))
            except json.JSONDecodeError:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RECIPIENTS)
        else:
            values.append(item)
    try:
        return list(dict.fromkeys(uuid.UUID(str(v)) for v in values))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RECIPIENTS)


def recipient_ids(message: Message) -> list[uuid.UUID]:
    return [r.user_id for r in message.recipients]


def read_receipt(message: Message, user: User) -> Optional[MessageRead]:
    return next((r for r in message.reads if r.user_id == user.id), None)


async def resolve_recipients(db: AsyncSession, sender: User, requested: list[uuid.UUID]) -> list[User]:
    """Clients write to the whole staff; admins pick active recipients."""
    if sender.role == UserRole.client:
        admins = await get_active_admins(db)
        if not admins:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Aucun administrateur disponible")
        return admins

    if not is_admin(sender):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Vous n'êtes pas autorisé à envoyer des messages"
        )
    if not requested:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Veuillez sélectionner au moins un destinataire"
        )

    result = await db.execute(select(User).where(User.id.in_(requested), User.is_active.is_(True)))
    users = list(result.scalars().all())
    if len(users) != len(requested):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RECIPIENTS)
    return users


# ── Queries ───────────────────────────────────────────────────────────


def _is_recipient(user_id: uuid.UUID):
    return exists().where(MessageRecipient.message_id == Message.id, MessageRecipient.user_id == user_id)


def _has_read(user_id: uuid.UUID):
    return exists().where(MessageRead.message_id == Message.id, MessageRead.user_id == user_id)


def _has_archived(user_id: uuid.UUID):
    return exists().where(MessageArchive.message_id == Message.id, MessageArchive.user_id == user_id)


async def get_messages(db: AsyncSession, user: User, box: MessageBox = MessageBox.all) -> list[Message]:
    if box == MessageBox.received:
        query = select(Message).where(_is_recipient(user.id))
    elif box == MessageBox.sent:
        query = select(Message).where(Message.sender_id == user.id)
    elif box == MessageBox.unread:
        query = select(Message).where(_is_recipient(user.id), ~_has_read(user.id))
    else:
        query = select(Message).where(or_(Message.sender_id == user.id, _is_recipient(user.id)))

    query = query.where(~_has_archived(user.id)).order_by(Message.created_at.desc()).limit(INBOX_LIMIT)
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_unread(db: AsyncSession, user: User) -> int:
    query = select(func.count(Message.id)).where(
        _is_recipient(user.id), ~_has_read(user.id), ~_has_archived(user.id)
    )
    return (await db.execute(query)).scalar_one()


async def get_message(db: AsyncSession, message_id: uuid.UUID) -> Optional[Message]:
    result = await db.execute(select(Message).where(Message.id == message_id))
    return result.scalar_one_or_none()


async def get_directory(db: AsyncSession) -> list[User]:
    result = await db.execute(
        select(User).where(User.is_active.is_(True)).order_by(User.last_name, User.first_name)
    )
    return list(result.scalars().all())


# ── Mutations ─────────────────────────────────────────────────────────


async def send_message(
    db: AsyncSession,
    sender: User,
    recipients: list[User],
    subject: str,
    body: str,
    attachments: list[StoredFile],
    dossier_id: Optional[uuid.UUID] = None,
) -> Message:
    message = Message(
        sender_id=sender.id,
        subject=subject.strip(),
        body=body.strip(),
        dossier_id=dossier_id,
        attachments=[a.to_dict() for a in attachments],
        recipients=[MessageRecipient(user_id=user.id) for user in recipients],
    )
    db.add(message)
    await db.flush()
    # Reload so nested recipient users are populated for the response.
    result = await db.execute(
        select(Message).where(Message.id == message.id).execution_options(populate_existing=True)
    )
    message = result.scalar_one()

    for user in recipients:
        await queue_notification(
            db,
            user.id,
            NotificationType.message_received,
            "Nouveau message",
            f'{sender.full_name} vous a envoyé un message : "{message.subject}"',
            link=f"/client/messages/{message.id}",
            metadata={"message_id": str(message.id), "sender_id": str(sender.id)},
        )
    return message


async def _insert_once(db: AsyncSession, row) -> bool:
    # The unique constraint on (message_id, user_id) absorbs concurrent duplicates.
    try:
        async with db.begin_nested():
            db.add(row)
            await db.flush()
    except IntegrityError:
        return False
    return True


async def mark_read(db: AsyncSession, message: Message, user: User) -> bool:
    """Record a read receipt for a recipient. Returns False when there was nothing to do."""
    if user.id not in recipient_ids(message) or read_receipt(message, user) is not None:
        return False
    message_id = message.id
    inserted = await _insert_once(db, MessageRead(message_id=message_id, user_id=user.id))
    await db.refresh(message, attribute_names=["reads"])
    return inserted


async def archive_message(db: AsyncSession, message: Message, user: User) -> bool:
    if any(a.user_id == user.id for a in message.archives):
        return False
    message_id = message.id
    inserted = await _insert_once(db, MessageArchive(message_id=message_id, user_id=user.id))
    await db.refresh(message, attribute_names=["archives"])
    return inserted
