"""
Tests for appointment booking and slot management.

Covers the default slot grid, closing and reopening slots, booking
against closed and taken slots, cancellation, and admin updates.
"""

import uuid

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cabinet.auth.models import User
from cabinet.notifications.models import Notification, NotificationType
from cabinet.scheduling.service import SLOT_CLOSED, SLOT_TAKEN, _is_slot_conflict
from cabinet.scheduling.slots import default_slot_times, normalize_time
from tests.conftest import AppointmentFactory, _fetch_all

DAY = "2030-03-12"


async def _close(admin_client: AsyncClient, *times: str, day: str = DAY) -> list[dict]:
    resp = await admin_client.post(
        "/api/creneaux", json={"date": day, "times": list(times), "closure_reason": "Audience"}
    )
    assert resp.status_code == 201
    return resp.json()["data"]


async def _book(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/api/appointments", json=AppointmentFactory(**overrides))
    assert resp.status_code == 201, resp.json()
    return resp.json()["data"]


# ---------------------------------------------------------------------------
# Slot grid
# ---------------------------------------------------------------------------


class TestSlotGrid:
    def test_default_slot_times(self):
        times = default_slot_times()
        assert times[0] == "09:00"
        assert "11:30" in times
        assert "12:00" not in times
        assert times[-1] == "17:00"
        assert len(times) == 13

    def test_normalize_time(self):
        assert normalize_time("9:00") == "09:00"
        assert normalize_time(" 14:30 ") == "14:30"


class TestSlotConflict:
    def test_only_the_active_slot_index_counts_as_taken(self):
        sqlite = IntegrityError(
            "INSERT", {}, Exception("UNIQUE constraint failed: rendez_vous.appointment_date, rendez_vous.appointment_time")
        )
        postgres = IntegrityError(
            "INSERT", {}, Exception('duplicate key value violates unique constraint "uq_rendez_vous_active_slot"')
        )
        foreign_key = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
        assert _is_slot_conflict(sqlite)
        assert _is_slot_conflict(postgres)
        assert not _is_slot_conflict(foreign_key)


class TestAvailability:
    """GET /api/creneaux/available"""

    async def test_all_slots_free_by_default(self, client: AsyncClient):
        resp = await client.get("/api/creneaux/available", params={"date": DAY})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["available_hours"] == default_slot_times()
        assert data["unavailable_hours"] == []

    async def test_closed_and_booked_slots_are_unavailable(self, admin_client: AsyncClient, client: AsyncClient):
        await _close(admin_client, "09:00")
        await _book(client, appointment_time="10:00")

        resp = await client.get("/api/creneaux/available", params={"date": DAY})
        data = resp.json()["data"]
        assert data["unavailable_hours"] == ["09:00", "10:00"]
        assert "09:00" not in data["available_hours"]
        assert "10:00" not in data["available_hours"]
        assert "09:30" in data["available_hours"]

    async def test_date_is_required(self, client: AsyncClient):
        resp = await client.get("/api/creneaux/available")
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Creneaux administration
# ---------------------------------------------------------------------------


class TestCreneaux:
    """/api/creneaux (admin)"""

    async def test_close_is_idempotent(self, admin_client: AsyncClient):
        first = await _close(admin_client, "14:00", "9:30")
        assert sorted(c["slot_time"] for c in first) == ["09:30", "14:00"]

        again = await _close(admin_client, "14:00")
        assert again[0]["id"] == next(c["id"] for c in first if c["slot_time"] == "14:00")

        listing = await admin_client.get("/api/creneaux", params={"date": DAY})
        assert len(listing.json()["data"]) == 2

    async def test_invalid_time_is_rejected(self, admin_client: AsyncClient):
        resp = await admin_client.post("/api/creneaux", json={"date": DAY, "times": ["25h"]})
        assert resp.status_code == 400

    async def test_reopen_slot(self, admin_client: AsyncClient):
        (creneau,) = await _close(admin_client, "16:00")
        resp = await admin_client.delete(f"/api/creneaux/{creneau['id']}")
        assert resp.status_code == 200

        available = await admin_client.get("/api/creneaux/available", params={"date": DAY})
        assert "16:00" in available.json()["data"]["available_hours"]

    async def test_reopen_unknown_slot(self, admin_client: AsyncClient):
        resp = await admin_client.delete(f"/api/creneaux/{uuid.uuid4()}")
        assert resp.status_code == 404

    async def test_client_cannot_close_slots(self, user_client: AsyncClient):
        resp = await user_client.post("/api/creneaux", json={"date": DAY, "times": ["10:00"]})
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------


class TestBooking:
    """POST /api/appointments"""

    async def test_free_slot_is_accepted(self, client: AsyncClient):
        data = await _book(client, appointment_time="9:30")
        assert data["status"] == "en_attente"
        assert data["appointment_time"] == "09:30"
        assert data["motive"] == "Consultation"
        assert data["user_id"] is None

    async def test_closed_slot_is_rejected(self, admin_client: AsyncClient, client: AsyncClient):
        await _close(admin_client, "10:30")
        resp = await client.post("/api/appointments", json=AppointmentFactory(appointment_time="10:30"))
        assert resp.status_code == 400
        assert resp.json()["message"] == SLOT_CLOSED

    async def test_taken_slot_is_rejected(self, client: AsyncClient):
        await _book(client, appointment_time="11:00")
        resp = await client.post("/api/appointments", json=AppointmentFactory(appointment_time="11:00"))
        assert resp.status_code == 400
        assert resp.json()["message"] == SLOT_TAKEN

    async def test_cancelled_booking_frees_slot(self, user_client: AsyncClient):
        booked = await _book(user_client, appointment_time="15:00")
        cancel = await user_client.patch(f"/api/appointments/{booked['id']}/cancel")
        assert cancel.status_code == 200

        again = await _book(user_client, appointment_time="15:00")
        assert again["id"] != booked["id"]

    async def test_unknown_motive_is_rejected(self, client: AsyncClient):
        resp = await client.post("/api/appointments", json=AppointmentFactory(motive="Divers"))
        assert resp.status_code == 400

    async def test_unknown_dossier_is_not_reported_as_taken_slot(self, user_client: AsyncClient):
        resp = await user_client.post(
            "/api/appointments", json=AppointmentFactory(appointment_time="16:00", dossier_id=str(uuid.uuid4()))
        )
        assert resp.status_code == 404

        available = await user_client.get("/api/creneaux/available", params={"date": DAY})
        assert "16:00" in available.json()["data"]["available_hours"]

    async def test_anonymous_booking_cannot_link_dossier(self, client: AsyncClient, anonymous_dossier: dict):
        resp = await client.post("/api/appointments", json=AppointmentFactory(dossier_id=anonymous_dossier["id"]))
        assert resp.status_code == 403

    async def test_foreign_dossier_cannot_be_linked(self, other_client: AsyncClient, client_dossier: dict):
        resp = await other_client.post("/api/appointments", json=AppointmentFactory(dossier_id=client_dossier["id"]))
        assert resp.status_code == 403

    async def test_owner_links_own_dossier(self, user_client: AsyncClient, client_dossier: dict):
        data = await _book(user_client, dossier_id=client_dossier["id"])
        assert data["dossier_id"] == client_dossier["id"]

    async def test_registered_booking_notifies_booker(self, user_client: AsyncClient, client_user: User):
        data = await _book(user_client)
        assert data["user_id"] == str(client_user.id)

        notifications = await _fetch_all(
            select(Notification).where(
                Notification.user_id == client_user.id,
                Notification.type == NotificationType.appointment_created,
            )
        )
        assert len(notifications) == 1
        assert notifications[0].link == "/client/rendez-vous"


# ---------------------------------------------------------------------------
# Listing, cancellation, administration
# ---------------------------------------------------------------------------


class TestAppointmentManagement:
    async def test_anonymous_booking_listed_by_email(self, client: AsyncClient, user_client: AsyncClient):
        await _book(client, email="CLIENT@cabinet-test.fr")
        resp = await user_client.get("/api/appointments")
        assert resp.status_code == 200
        assert len(resp.json()["data"]) == 1

    async def test_other_client_cannot_cancel(self, user_client: AsyncClient, other_client: AsyncClient):
        booked = await _book(user_client)
        resp = await other_client.patch(f"/api/appointments/{booked['id']}/cancel")
        assert resp.status_code == 403

    async def test_cancel_twice(self, user_client: AsyncClient):
        booked = await _book(user_client)
        await user_client.patch(f"/api/appointments/{booked['id']}/cancel")
        resp = await user_client.patch(f"/api/appointments/{booked['id']}/cancel")
        assert resp.status_code == 400

    async def test_admin_confirms_and_notifies(
        self, admin_client: AsyncClient, user_client: AsyncClient, client_user: User
    ):
        booked = await _book(user_client)
        resp = await admin_client.patch(f"/api/appointments/{booked['id']}", json={"status": "confirme"})
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "confirme"

        confirmed = await _fetch_all(
            select(Notification).where(
                Notification.user_id == client_user.id,
                Notification.type == NotificationType.appointment_confirmed,
            )
        )
        assert len(confirmed) == 1

    async def test_admin_cannot_move_onto_taken_slot(self, admin_client: AsyncClient, client: AsyncClient):
        await _book(client, appointment_time="09:00")
        second = await _book(client, appointment_time="09:30")
        resp = await admin_client.patch(f"/api/appointments/{second['id']}", json={"appointment_time": "09:00"})
        assert resp.status_code == 400
        assert resp.json()["message"] == SLOT_TAKEN

    async def test_admin_listing_filters_by_status(self, admin_client: AsyncClient, client: AsyncClient):
        await _book(client, appointment_time="14:00")
        pending = await admin_client.get("/api/appointments/admin", params={"status": "en_attente"})
        assert pending.json()["data"]["total"] == 1
        confirmed = await admin_client.get("/api/appointments/admin", params={"status": "confirme"})
        assert confirmed.json()["data"]["total"] == 0

    async def test_admin_deletes_appointment(self, admin_client: AsyncClient, client: AsyncClient):
        booked = await _book(client)
        resp = await admin_client.delete(f"/api/appointments/{booked['id']}")
        assert resp.status_code == 200
        gone = await admin_client.get(f"/api/appointments/{booked['id']}")
        assert gone.status_code == 404
