"""
Shared test fixtures for the cabinet backend test suite.

Sets up an async SQLite database in a temporary directory, overrides
FastAPI dependencies, and provides pre-authenticated HTTP clients for the
superadmin, admin, and client roles.
"""

import os
import tempfile
import uuid

import factory
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# ---- Environment overrides MUST come before any cabinet imports ----
# setdefault keeps one database when this module is imported again as tests.conftest.
_TMP_DIR = os.environ.setdefault("CABINET_TEST_DIR", tempfile.mkdtemp(prefix="cabinet-tests-"))
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["FIRST_ADMIN_EMAIL"] = "admin@test.com"
os.environ["FIRST_ADMIN_PASSWORD"] = "AdminPass123!"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["ENVIRONMENT"] = "test"

from cabinet.auth.models import User, UserRole  # noqa: E402
from cabinet.auth.service import create_access_token, hash_password  # noqa: E402
from cabinet.database import Base, get_db  # noqa: E402
from cabinet.main import app  # noqa: E402

# ---------------------------------------------------------------------------
# Async engine & session factory for the test database
# ---------------------------------------------------------------------------
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSession = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


# SQLite does not enforce FK constraints by default, and the driver's own
# BEGIN handling breaks SAVEPOINT; take over transaction control.
@event.listens_for(test_engine.sync_engine, "connect")
def _configure_sqlite(dbapi_conn, _connection_record):
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(test_engine.sync_engine, "begin")
def _begin_sqlite(conn):
    conn.exec_driver_sql("BEGIN")


# ---------------------------------------------------------------------------
# Database lifecycle
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create all tables before each test, drop them afterward."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ---------------------------------------------------------------------------
# DB session fixture
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """Provide a DB session for direct service-layer tests."""
    async with TestSession() as session:
        yield session


# ---------------------------------------------------------------------------
# Dependency override
# ---------------------------------------------------------------------------
async def _override_get_db():
    async with TestSession() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = _override_get_db


# ---------------------------------------------------------------------------
# HTTP client fixture
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def client() -> AsyncClient:
    """Unauthenticated httpx async client wired to the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helper: create a user directly in the database
# ---------------------------------------------------------------------------
async def _create_test_user(
    email: str,
    password: str,
    role: UserRole,
    first_name: str = "Test",
    last_name: str = "User",
    is_active: bool = True,
) -> User:
    """Insert a user into the test database and return it."""
    user = User(
        id=uuid.uuid4(),
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=is_active,
        failed_login_attempts=0,
    )
    async with TestSession() as session:
        session.add(user)
        await session.commit()
        await session.refresh(user)
    return user


async def _fetch_all(statement) -> list:
    """Run a query in a short-lived session so no read lock outlives the call."""
    async with TestSession() as session:
        result = await session.execute(statement)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Authenticated client helpers
# ---------------------------------------------------------------------------
def _auth_header(user: User) -> dict[str, str]:
    token = create_access_token(str(user.id), user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def superadmin_user() -> User:
    return await _create_test_user(
        email="direction@cabinet-test.fr",
        password="SuperPass123!",
        role=UserRole.superadmin,
        first_name="Hélène",
        last_name="Direction",
    )


@pytest_asyncio.fixture
async def admin_user() -> User:
    return await _create_test_user(
        email="admin@cabinet-test.fr",
        password="AdminPass123!",
        role=UserRole.admin,
        first_name="Admin",
        last_name="Testeur",
    )


@pytest_asyncio.fixture
async def client_user() -> User:
    return await _create_test_user(
        email="client@cabinet-test.fr",
        password="ClientPass123!",
        role=UserRole.client,
        first_name="Amina",
        last_name="Diallo",
    )


@pytest_asyncio.fixture
async def other_client_user() -> User:
    return await _create_test_user(
        email="autre@cabinet-test.fr",
        password="OtherPass123!",
        role=UserRole.client,
        first_name="Karim",
        last_name="Benali",
    )


@pytest_asyncio.fixture
async def admin_client(client: AsyncClient, admin_user: User) -> AsyncClient:
    """AsyncClient pre-authenticated as an admin."""
    client.headers.update(_auth_header(admin_user))
    return client


@pytest_asyncio.fixture
async def user_client(client_user: User) -> AsyncClient:
    """AsyncClient pre-authenticated as a client (separate client instance)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.headers.update(_auth_header(client_user))
        yield ac


@pytest_asyncio.fixture
async def other_client(other_client_user: User) -> AsyncClient:
    """AsyncClient pre-authenticated as an unrelated client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.headers.update(_auth_header(other_client_user))
        yield ac


@pytest_asyncio.fixture
async def failing_user_client(client_user: User) -> AsyncClient:
    """Client-role AsyncClient that receives 500 responses instead of the raised error."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.headers.update(_auth_header(client_user))
        yield ac


# ---------------------------------------------------------------------------
# Auth headers (dict) fixtures, useful when you already have a `client`
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict[str, str]:
    return _auth_header(admin_user)


@pytest_asyncio.fixture
async def superadmin_headers(superadmin_user: User) -> dict[str, str]:
    return _auth_header(superadmin_user)


@pytest_asyncio.fixture
async def client_headers(client_user: User) -> dict[str, str]:
    return _auth_header(client_user)


# ---------------------------------------------------------------------------
# Factory Boy factories
# ---------------------------------------------------------------------------
class UserFactory(factory.Factory):
    class Meta:
        model = dict

    email = factory.LazyFunction(lambda: f"user-{uuid.uuid4().hex[:8]}@cabinet-test.fr")
    password = "SecurePass123!"
    first_name = factory.Faker("first_name", locale="fr_FR")
    last_name = factory.Faker("last_name", locale="fr_FR")
    role = "client"


class DossierFactory(factory.Factory):
    class Meta:
        model = dict

    title = factory.Faker("sentence", nb_words=4, locale="fr_FR")
    description = factory.Faker("paragraph", locale="fr_FR")
    category = "sejour_titres"
    case_type = "Titre de séjour salarié"
    priority = "normale"


class AnonymousDossierFactory(DossierFactory):
    client_last_name = factory.Faker("last_name", locale="fr_FR")
    client_first_name = factory.Faker("first_name", locale="fr_FR")
    client_email = factory.LazyFunction(lambda: f"prospect-{uuid.uuid4().hex[:8]}@example.com")
    client_phone = "0601020304"


class AppointmentFactory(factory.Factory):
    class Meta:
        model = dict

    last_name = factory.Faker("last_name", locale="fr_FR")
    first_name = factory.Faker("first_name", locale="fr_FR")
    email = factory.LazyFunction(lambda: f"rdv-{uuid.uuid4().hex[:8]}@example.com")
    phone = "0601020304"
    appointment_date = "2030-03-12"
    appointment_time = "10:00"
    motive = "Consultation"
    description = "Première consultation"


# ---------------------------------------------------------------------------
# Convenience fixtures: records already in the DB
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def client_dossier(user_client: AsyncClient) -> dict:
    """A dossier created by the client for themselves."""
    resp = await user_client.post("/api/user/dossiers", json=DossierFactory())
    assert resp.status_code == 201
    return resp.json()["data"]


@pytest_asyncio.fixture
async def anonymous_dossier() -> dict:
    """A dossier submitted without an account."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as anon:
        resp = await anon.post("/api/user/dossiers", json=AnonymousDossierFactory())
    assert resp.status_code == 201
    return resp.json()["data"]
