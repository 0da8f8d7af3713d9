"""
Tests for the authentication and user-management endpoints.

Covers registration, login, account lockout, /me, impersonation,
password change, and admin-only user administration.
"""

from httpx import AsyncClient

from cabinet.auth.models import User, UserRole
from tests.conftest import UserFactory, _auth_header, _create_test_user

# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    """POST /api/auth/register"""

    async def test_register_creates_client_account(self, client: AsyncClient):
        resp = await client.post(
            "/api/auth/register",
            json={
                "first_name": "Fatou",
                "last_name": "Sow",
                "email": "Fatou.Sow@Example.com",
                "password": "Secret123",
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["token_type"] == "bearer"
        assert body["data"]["user"]["role"] == "client"
        assert body["data"]["user"]["email"] == "fatou.sow@example.com"
        assert body["data"]["user"]["profile_complete"] is False

    async def test_register_duplicate_email(self, client: AsyncClient, client_user: User):
        resp = await client.post(
            "/api/auth/register",
            json={
                "first_name": "Amina",
                "last_name": "Diallo",
                "email": "CLIENT@cabinet-test.fr",
                "password": "Secret123",
            },
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    async def test_register_validation_errors_use_envelope(self, client: AsyncClient):
        resp = await client.post("/api/auth/register", json={"email": "not-an-email"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        fields = {e["field"] for e in body["errors"]}
        assert "email" in fields
        assert "password" in fields


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    """POST /api/auth/login"""

    async def test_login_valid_credentials(self, client: AsyncClient):
        await _create_test_user(email="login-ok@test.com", password="GoodPassword1!", role=UserRole.avocat)
        resp = await client.post(
            "/api/auth/login",
            json={"email": "login-ok@test.com", "password": "GoodPassword1!"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert "access_token" in body["data"]
        assert body["data"]["user"]["role"] == "avocat"

    async def test_login_wrong_password(self, client: AsyncClient):
        await _create_test_user(email="login-bad@test.com", password="CorrectPassword1!", role=UserRole.client)
        resp = await client.post(
            "/api/auth/login",
            json={"email": "login-bad@test.com", "password": "WrongPassword1!"},
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Identifiants invalides"

    async def test_login_inactive_account(self, client: AsyncClient):
        await _create_test_user(
            email="inactive@test.com", password="Password123!", role=UserRole.client, is_active=False
        )
        resp = await client.post("/api/auth/login", json={"email": "inactive@test.com", "password": "Password123!"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Compte désactivé"

    async def test_account_lockout_after_failed_attempts(self, client: AsyncClient):
        """Account locks after max_login_attempts (5) consecutive failures."""
        await _create_test_user(email="lockout@test.com", password="RealPassword1!", role=UserRole.client)
        for _ in range(5):
            resp = await client.post(
                "/api/auth/login",
                json={"email": "lockout@test.com", "password": "BadGuess12345"},
            )
            assert resp.status_code == 401

        # After lockout, even the correct password should fail
        resp = await client.post(
            "/api/auth/login",
            json={"email": "lockout@test.com", "password": "RealPassword1!"},
        )
        assert resp.status_code == 401

    async def test_forgot_password_does_not_reveal_accounts(self, client: AsyncClient, client_user: User):
        known = await client.post("/api/auth/forgot-password", json={"email": "client@cabinet-test.fr"})
        unknown = await client.post("/api/auth/forgot-password", json={"email": "personne@test.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json()["message"] == unknown.json()["message"]


# ---------------------------------------------------------------------------
# GET /me and impersonation
# ---------------------------------------------------------------------------


class TestGetMe:
    """GET /api/auth/me"""

    async def test_get_me_authenticated(self, client: AsyncClient, admin_headers):
        resp = await client.get("/api/auth/me", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()["data"]
        assert body["email"] == "admin@cabinet-test.fr"
        assert body["role"] == "admin"

    async def test_get_me_unauthenticated(self, client: AsyncClient):
        resp = await client.get("/api/auth/me")
        assert resp.status_code == 401

    async def test_get_me_with_garbage_token(self, client: AsyncClient):
        resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Token invalide"


class TestImpersonation:
    """POST /api/auth/impersonate/{user_id}"""

    async def test_admin_can_view_client_space(self, admin_client: AsyncClient, client_user: User):
        resp = await admin_client.post(f"/api/auth/impersonate/{client_user.id}")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["user"]["id"] == str(client_user.id)

        me = await admin_client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"}
        )
        assert me.json()["data"]["email"] == "client@cabinet-test.fr"

    async def test_cannot_impersonate_staff(self, admin_client: AsyncClient, superadmin_user: User):
        resp = await admin_client.post(f"/api/auth/impersonate/{superadmin_user.id}")
        assert resp.status_code == 403

    async def test_client_cannot_impersonate(self, user_client: AsyncClient, other_client_user: User):
        resp = await user_client.post(f"/api/auth/impersonate/{other_client_user.id}")
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Profile and password
# ---------------------------------------------------------------------------


class TestProfile:
    """GET/PUT /api/user/profile, PUT /api/user/password"""

    async def test_update_profile(self, user_client: AsyncClient):
        resp = await user_client.put(
            "/api/user/profile", json={"phone": "0612345678", "city": "Lyon", "nationality": "Sénégalaise"}
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["city"] == "Lyon"
        assert data["phone"] == "0612345678"

    async def test_change_password_success(self, client: AsyncClient):
        user = await _create_test_user(email="chpw@test.com", password="OldPassword1!", role=UserRole.client)
        resp = await client.put(
            "/api/user/password",
            json={"current_password": "OldPassword1!", "new_password": "NewPassword2!"},
            headers=_auth_header(user),
        )
        assert resp.status_code == 200

        old = await client.post("/api/auth/login", json={"email": "chpw@test.com", "password": "OldPassword1!"})
        assert old.status_code == 401
        new = await client.post("/api/auth/login", json={"email": "chpw@test.com", "password": "NewPassword2!"})
        assert new.status_code == 200

    async def test_change_password_wrong_current(self, client: AsyncClient, admin_headers):
        resp = await client.put(
            "/api/user/password",
            json={"current_password": "WrongOld123!", "new_password": "NewPassword2!"},
            headers=admin_headers,
        )
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Admin user management
# ---------------------------------------------------------------------------


class TestAdminUserManagement:
    """Admin-only endpoints under /api/user"""

    async def test_admin_can_list_users(self, admin_client: AsyncClient):
        resp = await admin_client.get("/api/user/all")
        assert resp.status_code == 200
        body = resp.json()["data"]
        assert "items" in body
        assert body["total"] >= 1

    async def test_client_cannot_list_users(self, user_client: AsyncClient):
        resp = await user_client.get("/api/user/all")
        assert resp.status_code == 403

    async def test_admin_can_create_user(self, admin_client: AsyncClient):
        payload = UserFactory(role="avocat")
        resp = await admin_client.post("/api/user/create", json=payload)
        assert resp.status_code == 201
        body = resp.json()["data"]
        assert body["email"] == payload["email"]
        assert body["role"] == "avocat"

    async def test_admin_cannot_grant_superadmin(self, admin_client: AsyncClient):
        resp = await admin_client.post("/api/user/create", json=UserFactory(role="superadmin"))
        assert resp.status_code == 403

    async def test_admin_can_update_user(self, admin_client: AsyncClient, client_user: User):
        resp = await admin_client.put(f"/api/user/{client_user.id}", json={"first_name": "Aminata"})
        assert resp.status_code == 200
        assert resp.json()["data"]["first_name"] == "Aminata"

    async def test_delete_deactivates_account(self, admin_client: AsyncClient, client_user: User):
        resp = await admin_client.delete(f"/api/user/{client_user.id}")
        assert resp.status_code == 200

        detail = await admin_client.get(f"/api/user/{client_user.id}")
        assert detail.json()["data"]["is_active"] is False

    async def test_admin_cannot_deactivate_self(self, admin_client: AsyncClient, admin_user: User):
        resp = await admin_client.delete(f"/api/user/{admin_user.id}")
        assert resp.status_code == 400
