import uuid
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User, UserRole
from cabinet.config import settings
from cabinet.database import get_db

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Session expirée, veuillez vous reconnecter")
    except jwt.PyJWTError:
        raise _unauthorized("Token invalide")

    if payload.get("sub") is None or payload.get("type") != "access":
        raise _unauthorized("Token invalide")
    return payload


async def _user_from_token(db: AsyncSession, token: str) -> User:
    payload = decode_access_token(token)
    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        raise _unauthorized("Token invalide")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise _unauthorized("Utilisateur introuvable")
    if not user.is_active:
        raise _unauthorized("Compte désactivé")
    return user


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    if credentials is None:
        raise _unauthorized("Authentification requise")
    return await _user_from_token(db, credentials.credentials)


async def get_optional_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Optional[User]:
    """Resolve the caller when a valid token is sent; public routes continue anonymously otherwise."""
    if credentials is None:
        return None
    try:
        return await _user_from_token(db, credentials.credentials)
    except HTTPException:
        return None


async def get_user_from_header_or_query(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
    token: Optional[str] = Query(default=None),
) -> User:
    """Accept ?token= as well, for inline previews opened in an iframe or new tab."""
    if credentials is not None:
        return await _user_from_token(db, credentials.credentials)
    if token:
        return await _user_from_token(db, token)
    raise _unauthorized("Authentification requise")


def require_roles(*roles: str):
    async def role_checker(current_user: Annotated[User, Depends(get_current_user)]):
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé")
        return current_user

    return role_checker


require_admin = require_roles(UserRole.admin, UserRole.superadmin)
require_superadmin = require_roles(UserRole.superadmin)
