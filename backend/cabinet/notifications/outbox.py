import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.common.base_models import dump_json, utcnow
from cabinet.config import settings
from cabinet.notifications.models import Notification, NotificationOutbox, NotificationType, OutboxStatus

logger = logging.getLogger(__name__)


async def queue_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: NotificationType,
    title: str,
    message: str,
    link: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> NotificationOutbox:
    """Queue a notification in the caller's transaction."""
    event = NotificationOutbox(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        link=link,
        metadata_json=dump_json(metadata),
        status=OutboxStatus.pending,
        attempts=0,
    )
    db.add(event)
    await db.flush()
    return event


async def dispatch_pending(db: AsyncSession, limit: int = 100) -> int:
    """Turn pending outbox rows into notifications.

    Each row is delivered in its own SAVEPOINT. A failed delivery is
    recorded on the row, which stays pending until it reaches
    ``notification_max_attempts`` and is marked failed.
    Returns the number of rows delivered.
    """
    result = await db.execute(
        select(NotificationOutbox)
        .where(NotificationOutbox.status == OutboxStatus.pending)
        .order_by(NotificationOutbox.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    events = list(result.scalars().all())

    delivered = 0
    for event in events:
        event_id, attempts = event.id, event.attempts
        notification = Notification(
            user_id=event.user_id,
            type=event.type,
            title=event.title,
            message=event.message,
            link=event.link,
            metadata_json=event.metadata_json,
        )
        try:
            async with db.begin_nested():
                db.add(notification)
                await db.flush()
        except SQLAlchemyError as exc:
            event.attempts = attempts + 1
            event.last_error = str(exc)[:2000]
            if event.attempts >= settings.notification_max_attempts:
                event.status = OutboxStatus.failed
                logger.error("Notification %s failed permanently after %d attempts", event_id, event.attempts)
            else:
                logger.warning("Notification %s delivery failed (attempt %d): %s", event_id, event.attempts, exc)
            continue

        event.attempts = attempts + 1
        event.status = OutboxStatus.delivered
        event.delivered_at = utcnow()
        event.notification_id = notification.id
        event.last_error = None
        delivered += 1

    await db.flush()
    return delivered


async def flush_notifications(db: AsyncSession) -> None:
    """Deliver what the current request queued; leftovers go to the periodic sweep."""
    try:
        async with db.begin_nested():
            await dispatch_pending(db)
    except SQLAlchemyError:
        logger.exception("Notification dispatch failed; rows left for the sweeper")
