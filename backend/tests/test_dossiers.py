"""
Tests for the dossier endpoints and their service helpers.

Covers ownership on create, day-scoped numbering, the status pipeline,
assignment rules, owner notifications, access control, and deletion.
"""

import re
import uuid
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cabinet.auth.models import User, UserRole
from cabinet.dossiers.models import Dossier, DossierCounter
from cabinet.dossiers.numbering import format_numero, insert_with_numero, next_numero, parse_sequence
from cabinet.dossiers.ownership import OwnerKind
from cabinet.dossiers.statuses import DossierStatus, can_transition
from cabinet.logs.models import ActivityLog, LogAction
from cabinet.notifications.models import Notification, NotificationType
from tests.conftest import AnonymousDossierFactory, DossierFactory, _create_test_user, _fetch_all

NUMERO_RE = re.compile(r"^DOS-\d{8}-\d{4}$")


async def _notifications_for(user: User, type: NotificationType | None = None) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user.id)
    if type is not None:
        stmt = stmt.where(Notification.type == type)
    return await _fetch_all(stmt)


async def _set_status(admin_client: AsyncClient, dossier_id: str, *statuses: str) -> None:
    for value in statuses:
        resp = await admin_client.put(f"/api/user/dossiers/{dossier_id}", json={"status": value})
        assert resp.status_code == 200, resp.json()


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreateDossier:
    """POST /api/user/dossiers"""

    async def test_client_creates_own_dossier(self, user_client: AsyncClient, client_user: User):
        resp = await user_client.post("/api/user/dossiers", json=DossierFactory(title="Renouvellement titre"))
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["owner_kind"] == "registered"
        assert data["user_id"] == str(client_user.id)
        assert data["client_email"] is None
        assert data["status"] == "recu"
        assert data["status_label"] == "Reçu"
        assert NUMERO_RE.match(data["numero"])

    async def test_client_contact_fields_are_ignored(self, user_client: AsyncClient, client_user: User):
        payload = AnonymousDossierFactory()
        resp = await user_client.post("/api/user/dossiers", json=payload)
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["owner_kind"] == "registered"
        assert data["client_last_name"] is None
        assert data["client_email"] is None

    async def test_anonymous_submission_with_contact(self, client: AsyncClient):
        payload = AnonymousDossierFactory(client_email="Prospect@Example.com")
        resp = await client.post("/api/user/dossiers", json=payload)
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["owner_kind"] == "anonymous"
        assert data["user_id"] is None
        assert data["client_email"] == "prospect@example.com"
        assert data["created_by"] is None

    async def test_anonymous_submission_requires_contact(self, client: AsyncClient):
        payload = DossierFactory(client_last_name="Martin", client_first_name="", client_email="")
        resp = await client.post("/api/user/dossiers", json=payload)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Le nom, le prénom et l'email du client sont requis"

    async def test_admin_without_owner_is_rejected(self, admin_client: AsyncClient):
        resp = await admin_client.post("/api/user/dossiers", json=DossierFactory())
        assert resp.status_code == 400

    async def test_client_cannot_create_for_someone_else(
        self, user_client: AsyncClient, other_client_user: User
    ):
        resp = await user_client.post(
            "/api/user/dossiers", json=DossierFactory(user_id=str(other_client_user.id))
        )
        assert resp.status_code == 403

    async def test_admin_creates_for_client_and_notifies(
        self, admin_client: AsyncClient, client_user: User
    ):
        resp = await admin_client.post("/api/user/dossiers", json=DossierFactory(user_id=str(client_user.id)))
        assert resp.status_code == 201
        assert resp.json()["data"]["user"]["email"] == "client@cabinet-test.fr"

        notifications = await _notifications_for(client_user, NotificationType.dossier_created)
        assert len(notifications) == 1
        assert notifications[0].link == f"/client/dossiers/{resp.json()['data']['id']}"

    async def test_admin_creates_for_unknown_user(self, admin_client: AsyncClient):
        resp = await admin_client.post("/api/user/dossiers", json=DossierFactory(user_id=str(uuid.uuid4())))
        assert resp.status_code == 404

    async def test_client_cannot_assign_on_create(self, user_client: AsyncClient, admin_user: User):
        resp = await user_client.post("/api/user/dossiers", json=DossierFactory(assigned_to=str(admin_user.id)))
        assert resp.status_code == 403

    async def test_same_day_numeros_increase(self, user_client: AsyncClient):
        numeros = []
        for _ in range(3):
            resp = await user_client.post("/api/user/dossiers", json=DossierFactory())
            assert resp.status_code == 201
            numeros.append(resp.json()["data"]["numero"])

        assert len(set(numeros)) == 3
        sequences = [int(n.rsplit("-", 1)[1]) for n in numeros]
        assert sequences == sorted(sequences)
        assert sequences[0] < sequences[1] < sequences[2]
        assert len({n.rsplit("-", 1)[0] for n in numeros}) == 1


# ---------------------------------------------------------------------------
# Numbering helpers
# ---------------------------------------------------------------------------


class TestNumbering:
    def test_format_and_parse(self):
        day = date(2030, 1, 5)
        assert format_numero(day, 7) == "DOS-20300105-0007"
        assert parse_sequence("DOS-20300105-0042", "DOS-20300105-") == 42
        assert parse_sequence("DOS-20300106-0042", "DOS-20300105-") == 0
        assert parse_sequence(None, "DOS-20300105-") == 0

    async def test_counter_seeds_from_existing_numeros(self, db_session):
        day = date(2030, 1, 5)
        db_session.add(
            Dossier(
                numero="DOS-20300105-0007",
                owner_kind=OwnerKind.anonymous,
                client_last_name="Ancien",
                client_first_name="Dossier",
                client_email="ancien@example.com",
                title="Import historique",
            )
        )
        await db_session.flush()

        assert await next_numero(db_session, day) == "DOS-20300105-0008"
        assert await next_numero(db_session, day) == "DOS-20300105-0009"

    async def test_insert_skips_taken_numero(self, db_session):
        day = date(2030, 2, 1)
        db_session.add(DossierCounter(day=day, last_value=0))
        db_session.add(
            Dossier(
                numero="DOS-20300201-0001",
                owner_kind=OwnerKind.anonymous,
                client_last_name="Pris",
                client_first_name="Numero",
                client_email="pris@example.com",
                title="Occupe le premier numero",
            )
        )
        await db_session.flush()

        dossier = Dossier(
            owner_kind=OwnerKind.anonymous,
            client_last_name="Nouveau",
            client_first_name="Client",
            client_email="nouveau@example.com",
            title="Nouveau dossier",
        )
        await insert_with_numero(db_session, dossier, day)
        assert dossier.numero == "DOS-20300201-0002"


# ---------------------------------------------------------------------------
# Ownership invariant
# ---------------------------------------------------------------------------


class TestOwnershipConstraint:
    async def test_registered_dossier_cannot_carry_contact(self, db_session, client_user: User):
        db_session.add(
            Dossier(
                numero="DOS-20300301-0001",
                owner_kind=OwnerKind.registered,
                user_id=client_user.id,
                client_email="contact@example.com",
                title="Incoherent",
            )
        )
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_anonymous_dossier_requires_contact(self, db_session):
        db_session.add(
            Dossier(numero="DOS-20300301-0002", owner_kind=OwnerKind.anonymous, title="Sans contact")
        )
        with pytest.raises(IntegrityError):
            await db_session.flush()


# ---------------------------------------------------------------------------
# Listing and access
# ---------------------------------------------------------------------------


class TestListAndAccess:
    async def test_client_sees_only_own_dossiers(
        self, user_client: AsyncClient, other_client: AsyncClient, client_dossier: dict
    ):
        mine = await user_client.get("/api/user/dossiers")
        assert mine.status_code == 200
        assert [d["id"] for d in mine.json()["data"]["items"]] == [client_dossier["id"]]

        theirs = await other_client.get("/api/user/dossiers")
        assert theirs.json()["data"]["total"] == 0

    async def test_unrelated_client_is_forbidden(self, other_client: AsyncClient, client_dossier: dict):
        read = await other_client.get(f"/api/user/dossiers/{client_dossier['id']}")
        assert read.status_code == 403
        write = await other_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"title": "Piraté"})
        assert write.status_code == 403

    async def test_unknown_dossier_is_404(self, user_client: AsyncClient):
        resp = await user_client.get(f"/api/user/dossiers/{uuid.uuid4()}")
        assert resp.status_code == 404

    async def test_anonymous_dossier_visible_after_registration(
        self, client: AsyncClient, anonymous_dossier: dict
    ):
        register = await client.post(
            "/api/auth/register",
            json={
                "first_name": anonymous_dossier["client_first_name"],
                "last_name": anonymous_dossier["client_last_name"],
                "email": anonymous_dossier["client_email"],
                "password": "Secret123",
            },
        )
        token = register.json()["data"]["access_token"]
        headers = {"Authorization": f"Bearer {token}"}

        listing = await client.get("/api/user/dossiers", headers=headers)
        assert [d["id"] for d in listing.json()["data"]["items"]] == [anonymous_dossier["id"]]
        detail = await client.get(f"/api/user/dossiers/{anonymous_dossier['id']}", headers=headers)
        assert detail.status_code == 200

    async def test_admin_listing_filters(
        self, admin_client: AsyncClient, client_dossier: dict, anonymous_dossier: dict
    ):
        all_resp = await admin_client.get("/api/user/dossiers/admin")
        assert all_resp.json()["data"]["total"] == 2

        search = await admin_client.get(
            "/api/user/dossiers/admin", params={"search": anonymous_dossier["client_email"]}
        )
        assert [d["id"] for d in search.json()["data"]["items"]] == [anonymous_dossier["id"]]

    async def test_client_cannot_use_admin_listing(self, user_client: AsyncClient):
        resp = await user_client.get("/api/user/dossiers/admin")
        assert resp.status_code == 403

    async def test_client_can_edit_own_details(self, user_client: AsyncClient, client_dossier: dict):
        resp = await user_client.put(
            f"/api/user/dossiers/{client_dossier['id']}", json={"description": "Pièces jointes envoyées"}
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["description"] == "Pièces jointes envoyées"


# ---------------------------------------------------------------------------
# Status pipeline
# ---------------------------------------------------------------------------


class TestStatusPipeline:
    def test_transition_table(self):
        assert can_transition(DossierStatus.recu, DossierStatus.accepte)
        assert can_transition(DossierStatus.recu, DossierStatus.recu)
        assert not can_transition(DossierStatus.recu, DossierStatus.depose)
        assert can_transition(DossierStatus.en_cours, DossierStatus.depose)
        assert not can_transition(DossierStatus.accepte, DossierStatus.en_cours)
        assert not can_transition(DossierStatus.rejet, DossierStatus.recours_preparation)
        assert can_transition(DossierStatus.depose, DossierStatus.refuse)

    async def test_illegal_transition_is_409(self, admin_client: AsyncClient, client_dossier: dict):
        resp = await admin_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"status": "depose"})
        assert resp.status_code == 409
        assert resp.json()["message"].startswith("Transition de statut non autorisée")

    async def test_legacy_status_cannot_be_set(self, admin_client: AsyncClient, client_dossier: dict):
        resp = await admin_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"status": "en_cours"})
        assert resp.status_code == 400

    async def test_client_cannot_change_status(self, user_client: AsyncClient, client_dossier: dict):
        resp = await user_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"status": "accepte"})
        assert resp.status_code == 403

    async def test_status_change_notifies_once(
        self, admin_client: AsyncClient, client_dossier: dict, client_user: User
    ):
        resp = await admin_client.put(
            f"/api/user/dossiers/{client_dossier['id']}", json={"status": "accepte", "title": "Nouveau titre"}
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["status_label"] == "Accepté"

        notifications = await _notifications_for(client_user)
        assert len(notifications) == 1
        assert notifications[0].type == NotificationType.dossier_status_changed

    async def test_same_status_sends_nothing(
        self, admin_client: AsyncClient, client_dossier: dict, client_user: User
    ):
        await _set_status(admin_client, client_dossier["id"], "accepte")
        before = await _notifications_for(client_user)

        resp = await admin_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"status": "accepte"})
        assert resp.status_code == 200
        assert len(await _notifications_for(client_user)) == len(before)

    async def test_custom_notification_message(
        self, admin_client: AsyncClient, client_dossier: dict, client_user: User
    ):
        await admin_client.put(
            f"/api/user/dossiers/{client_dossier['id']}",
            json={"status": "accepte", "notification_message": "Bonne nouvelle, nous prenons votre dossier."},
        )
        (notification,) = await _notifications_for(client_user)
        assert notification.message == "Bonne nouvelle, nous prenons votre dossier."

    async def test_full_pipeline_to_favourable_decision(self, admin_client: AsyncClient, client_dossier: dict):
        await _set_status(
            admin_client,
            client_dossier["id"],
            "accepte",
            "en_attente_onboarding",
            "en_cours_instruction",
            "pieces_manquantes",
            "dossier_complet",
            "depose",
            "reception_confirmee",
            "decision_favorable",
        )
        resp = await admin_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"status": "refuse"})
        assert resp.status_code == 409

    async def test_admin_can_force_correction_of_final_decision(
        self, admin_client: AsyncClient, client_dossier: dict, client_user: User
    ):
        await _set_status(admin_client, client_dossier["id"], "accepte", "refuse")
        before = await _notifications_for(client_user)

        resp = await admin_client.put(
            f"/api/user/dossiers/{client_dossier['id']}", json={"status": "en_attente_onboarding", "force": True}
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "en_attente_onboarding"

        after = await _notifications_for(client_user)
        assert len(after) == len(before) + 1

        (entry,) = await _fetch_all(
            select(ActivityLog).where(
                ActivityLog.action == LogAction.dossier_updated, ActivityLog.metadata_json.like('%"forced": true%')
            )
        )
        assert "en_attente_onboarding" in entry.metadata_json

    async def test_client_cannot_force_status(self, user_client: AsyncClient, client_dossier: dict):
        resp = await user_client.put(
            f"/api/user/dossiers/{client_dossier['id']}", json={"status": "depose", "force": True}
        )
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


class TestAssignment:
    async def test_assigning_to_client_is_rejected(
        self, admin_client: AsyncClient, client_dossier: dict, other_client_user: User
    ):
        resp = await admin_client.put(
            f"/api/user/dossiers/{client_dossier['id']}", json={"assigned_to": str(other_client_user.id)}
        )
        assert resp.status_code == 400

    async def test_assigning_to_admin_notifies_once(
        self, admin_client: AsyncClient, client_dossier: dict, client_user: User
    ):
        colleague = await _create_test_user(
            email="collegue@cabinet-test.fr", password="Colleague123!", role=UserRole.admin, first_name="Paul"
        )
        resp = await admin_client.put(
            f"/api/user/dossiers/{client_dossier['id']}", json={"assigned_to": str(colleague.id)}
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["assignee"]["id"] == str(colleague.id)

        notifications = await _notifications_for(client_user)
        assert len(notifications) == 1
        assert notifications[0].type == NotificationType.dossier_assigned

    async def test_assignee_gains_access(self, admin_client: AsyncClient, client_dossier: dict):
        colleague = await _create_test_user(
            email="assigne@cabinet-test.fr", password="Colleague123!", role=UserRole.superadmin
        )
        await admin_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"assigned_to": str(colleague.id)})

        listing = await admin_client.get("/api/user/dossiers/admin", params={"assigned_to": str(colleague.id)})
        assert listing.json()["data"]["total"] == 1

    async def test_unassign(self, admin_client: AsyncClient, client_dossier: dict, admin_user: User):
        await admin_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"assigned_to": str(admin_user.id)})
        resp = await admin_client.put(f"/api/user/dossiers/{client_dossier['id']}", json={"assigned_to": None})
        assert resp.status_code == 200
        assert resp.json()["data"]["assigned_to"] is None

    async def test_client_cannot_assign(
        self, user_client: AsyncClient, client_dossier: dict, admin_user: User
    ):
        resp = await user_client.put(
            f"/api/user/dossiers/{client_dossier['id']}", json={"assigned_to": str(admin_user.id)}
        )
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Refusal and deletion
# ---------------------------------------------------------------------------


class TestRefuseAndDelete:
    async def test_refuse_uses_default_reason(
        self, admin_client: AsyncClient, client_dossier: dict, client_user: User
    ):
        resp = await admin_client.post(f"/api/user/dossiers/{client_dossier['id']}/refuse", json={})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "refuse"
        assert data["refusal_reason"] == "Dossier refusé par l'administrateur"
        assert len(await _notifications_for(client_user, NotificationType.dossier_status_changed)) == 1

        again = await admin_client.post(f"/api/user/dossiers/{client_dossier['id']}/refuse", json={})
        assert again.status_code == 400

    async def test_client_cannot_refuse(self, user_client: AsyncClient, client_dossier: dict):
        resp = await user_client.post(f"/api/user/dossiers/{client_dossier['id']}/refuse", json={"reason": "Non"})
        assert resp.status_code == 403

    async def test_delete_notifies_owner(
        self, admin_client: AsyncClient, client_dossier: dict, client_user: User
    ):
        resp = await admin_client.delete(f"/api/user/dossiers/{client_dossier['id']}")
        assert resp.status_code == 200

        (notification,) = await _notifications_for(client_user, NotificationType.dossier_deleted)
        assert client_dossier["numero"] in notification.message

        gone = await admin_client.get(f"/api/user/dossiers/{client_dossier['id']}")
        assert gone.status_code == 404

    async def test_client_cannot_delete(self, user_client: AsyncClient, client_dossier: dict):
        resp = await user_client.delete(f"/api/user/dossiers/{client_dossier['id']}")
        assert resp.status_code == 403
