"""
Tests for in-app notifications and the outbox that delivers them.
"""

import uuid

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.notifications.models import Notification, NotificationOutbox, NotificationType, OutboxStatus
from cabinet.notifications.outbox import dispatch_pending, queue_notification
from tests.conftest import _fetch_all


async def _notify(db: AsyncSession, user_id: uuid.UUID, title: str = "Dossier mis à jour") -> NotificationOutbox:
    event = await queue_notification(
        db,
        user_id,
        NotificationType.dossier_status_changed,
        title,
        "Votre dossier est passé au statut « En cours ».",
        link="/client/dossiers",
        metadata={"status": "en_cours"},
    )
    await dispatch_pending(db)
    await db.commit()
    return event


# ---------------------------------------------------------------------------
# Outbox delivery
# ---------------------------------------------------------------------------


class TestOutbox:
    async def test_pending_row_is_delivered(self, db_session: AsyncSession, client_user: User):
        event = await _notify(db_session, client_user.id)
        assert event.status == OutboxStatus.delivered
        assert event.attempts == 1
        assert event.notification_id is not None

        (notification,) = await _fetch_all(select(Notification).where(Notification.user_id == client_user.id))
        assert notification.title == "Dossier mis à jour"
        assert notification.is_read is False

    async def test_failed_delivery_stays_pending(self, db_session: AsyncSession):
        event = await _notify(db_session, uuid.uuid4())
        assert event.status == OutboxStatus.pending
        assert event.attempts == 1
        assert event.last_error
        assert await _fetch_all(select(Notification)) == []

    async def test_row_fails_after_max_attempts(self, db_session: AsyncSession):
        event = await queue_notification(
            db_session, uuid.uuid4(), NotificationType.task_assigned, "Tâche", "Nouvelle tâche"
        )
        event.attempts = 4
        await dispatch_pending(db_session)
        await db_session.commit()
        assert event.status == OutboxStatus.failed
        assert event.attempts == 5

    async def test_one_failure_does_not_block_others(self, db_session: AsyncSession, client_user: User):
        await queue_notification(db_session, uuid.uuid4(), NotificationType.task_assigned, "Perdue", "x")
        await queue_notification(db_session, client_user.id, NotificationType.task_assigned, "Reçue", "y")
        delivered = await dispatch_pending(db_session)
        await db_session.commit()
        assert delivered == 1

        rows = await _fetch_all(select(Notification))
        assert [n.title for n in rows] == ["Reçue"]


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


class TestNotificationApi:
    async def test_list_and_unread(self, db_session: AsyncSession, user_client: AsyncClient, client_user: User):
        await _notify(db_session, client_user.id, "Premier")
        await _notify(db_session, client_user.id, "Second")

        listing = await user_client.get("/api/notifications")
        assert listing.status_code == 200
        assert listing.json()["data"]["total"] == 2
        assert listing.json()["data"]["items"][0]["metadata"] == {"status": "en_cours"}

        unread = await user_client.get("/api/notifications/unread")
        assert unread.json()["data"]["count"] == 2

    async def test_mark_one_read(self, db_session: AsyncSession, user_client: AsyncClient, client_user: User):
        event = await _notify(db_session, client_user.id)
        resp = await user_client.put(f"/api/notifications/{event.notification_id}/read")
        assert resp.status_code == 200
        assert resp.json()["data"]["is_read"] is True
        assert resp.json()["data"]["read_at"] is not None

    async def test_read_all(self, db_session: AsyncSession, user_client: AsyncClient, client_user: User):
        await _notify(db_session, client_user.id)
        await _notify(db_session, client_user.id)

        resp = await user_client.put("/api/notifications/read-all")
        assert resp.json()["data"]["updated"] == 2

        unread = await user_client.get("/api/notifications", params={"unread_only": True})
        assert unread.json()["data"]["total"] == 0

    async def test_cannot_touch_other_users_notifications(
        self, db_session: AsyncSession, other_client: AsyncClient, client_user: User
    ):
        event = await _notify(db_session, client_user.id)
        read = await other_client.put(f"/api/notifications/{event.notification_id}/read")
        assert read.status_code == 404
        delete = await other_client.delete(f"/api/notifications/{event.notification_id}")
        assert delete.status_code == 404

    async def test_delete(self, db_session: AsyncSession, user_client: AsyncClient, client_user: User):
        event = await _notify(db_session, client_user.id)
        resp = await user_client.delete(f"/api/notifications/{event.notification_id}")
        assert resp.status_code == 200
        assert await _fetch_all(select(Notification)) == []
