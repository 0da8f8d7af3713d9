import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from cabinet.celery_app import celery
from cabinet.config import settings
from cabinet.database import session_scope
from cabinet.notifications.outbox import dispatch_pending

logger = logging.getLogger(__name__)


async def _sweep(batch_size: int) -> int:
    # Each task run gets its own event loop, so connections cannot be pooled across runs.
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    try:
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_scope(factory) as db:
            return await dispatch_pending(db, limit=batch_size)
    finally:
        await engine.dispose()


@celery.task(name="dispatch_notification_outbox", bind=True, max_retries=3)
def dispatch_notification_outbox(self, batch_size: int = 500) -> int:
    try:
        delivered = asyncio.run(_sweep(batch_size))
    except Exception as exc:
        logger.error("Notification outbox sweep failed: %s", exc)
        raise self.retry(exc=exc, countdown=2 ** self.request.retries)
    if delivered:
        logger.info("Notification outbox sweep delivered %d notification(s)", delivered)
    return delivered
