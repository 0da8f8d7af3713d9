import logging
import uuid
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import HTTPException, status
from passlib.context import CryptContext
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import ADMIN_ROLES, User, UserRole
from cabinet.auth.schemas import ProfileUpdate, RegisterRequest, UserCreate, UserUpdate
from cabinet.common.base_models import as_utc, utcnow
from cabinet.common.pagination import fetch_page
from cabinet.config import settings
from cabinet.database import session_scope

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Fields a client must fill before their profile counts as complete.
PROFILE_REQUIRED_FIELDS = (
    "phone",
    "birth_date",
    "birth_place",
    "nationality",
    "postal_address",
    "city",
    "postal_code",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def create_access_token(
    user_id: str,
    role: str,
    expires_minutes: Optional[int] = None,
    actor_id: Optional[str] = None,
) -> str:
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_access_token_expire_minutes
    payload = {"sub": user_id, "role": role, "type": "access", "exp": utcnow() + timedelta(minutes=minutes)}
    if actor_id is not None:
        payload["act"] = actor_id
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def is_profile_complete(user: User) -> bool:
    return all(getattr(user, field) for field in PROFILE_REQUIRED_FIELDS)


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(func.lower(User.email) == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_active_admins(db: AsyncSession) -> list[User]:
    result = await db.execute(
        select(User).where(User.role.in_(ADMIN_ROLES), User.is_active.is_(True)).order_by(User.last_name)
    )
    return list(result.scalars().all())


async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    user = await get_user_by_email(db, email)
    if user is None:
        return None

    if user.locked_until is not None and as_utc(user.locked_until) > utcnow():
        return None

    if not verify_password(password, user.password_hash):
        user.failed_login_attempts += 1
        if user.failed_login_attempts >= settings.max_login_attempts:
            user.locked_until = utcnow() + timedelta(minutes=settings.lockout_duration_minutes)
        await db.flush()
        return None

    # Reset failed attempts on success
    user.failed_login_attempts = 0
    user.locked_until = None
    await db.flush()
    return user


async def _ensure_email_available(db: AsyncSession, email: str, exclude_id: Optional[uuid.UUID] = None) -> None:
    existing = await get_user_by_email(db, email)
    if existing is not None and existing.id != exclude_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Un utilisateur avec cet email existe déjà")


async def register_client(db: AsyncSession, data: RegisterRequest) -> User:
    await _ensure_email_available(db, data.email)
    user = User(
        email=normalize_email(data.email),
        password_hash=hash_password(data.password),
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        phone=data.phone,
        role=UserRole.client,
        profile_complete=False,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


async def create_user(db: AsyncSession, data: UserCreate) -> User:
    await _ensure_email_available(db, data.email)
    user = User(
        email=normalize_email(data.email),
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
        role=data.role,
    )
    user.profile_complete = is_profile_complete(user)
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


async def get_users(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> tuple[list[User], int]:
    query = select(User)
    count_query = select(func.count(User.id))

    if role:
        query = query.where(User.role == role)
        count_query = count_query.where(User.role == role)
    if is_active is not None:
        query = query.where(User.is_active.is_(is_active))
        count_query = count_query.where(User.is_active.is_(is_active))
    if search:
        pattern = f"%{search}%"
        search_filter = or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            User.email.ilike(pattern),
        )
        query = query.where(search_filter)
        count_query = count_query.where(search_filter)

    return await fetch_page(db, query.order_by(User.created_at.desc()), count_query, page, page_size)


async def update_user(db: AsyncSession, user: User, data: ProfileUpdate | UserUpdate) -> dict:
    """Apply changed fields and return an {field: {"old", "new"}} diff."""
    update_data = data.model_dump(exclude_unset=True)
    if "email" in update_data and update_data["email"] is not None:
        update_data["email"] = normalize_email(update_data["email"])
        await _ensure_email_available(db, update_data["email"], exclude_id=user.id)

    changes = {}
    for field, value in update_data.items():
        old_value = getattr(user, field)
        if old_value != value:
            changes[field] = {"old": old_value, "new": value}
            setattr(user, field, value)

    user.profile_complete = is_profile_complete(user)
    await db.flush()
    await db.refresh(user)
    return changes


async def bootstrap_admin() -> None:
    async with session_scope() as db:
        result = await db.execute(select(User).where(User.role == UserRole.superadmin).limit(1))
        if result.scalar_one_or_none() is not None:
            return

        if await get_user_by_email(db, settings.first_admin_email) is not None:
            logger.warning("Bootstrap skipped: %s exists but no superadmin is defined", settings.first_admin_email)
            return

        admin = User(
            email=normalize_email(settings.first_admin_email),
            password_hash=hash_password(settings.first_admin_password),
            first_name=settings.first_admin_first_name,
            last_name=settings.first_admin_last_name,
            role=UserRole.superadmin,
            is_active=True,
        )
        db.add(admin)
    logger.info("Bootstrap superadmin created: %s", settings.first_admin_email)
