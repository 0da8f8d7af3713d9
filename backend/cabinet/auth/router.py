import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User, UserRole
from cabinet.auth.schemas import (
    ForgotPasswordRequest,
    ImpersonationResponse,
    LoginRequest,
    PasswordChange,
    ProfileUpdate,
    RegisterRequest,
    TokenResponse,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from cabinet.auth.service import (
    authenticate_user,
    create_access_token,
    create_user,
    get_user,
    get_user_by_email,
    get_users,
    hash_password,
    register_client,
    update_user,
    verify_password,
)
from cabinet.common.pagination import PaginatedResponse
from cabinet.common.responses import ApiResponse, ok
from cabinet.config import settings
from cabinet.database import get_db
from cabinet.dependencies import get_current_user, require_admin
from cabinet.logs.models import LogAction
from cabinet.logs.service import record_log

router = APIRouter()


def _token_response(user: User) -> TokenResponse:
    token = create_access_token(str(user.id), user.role.value)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.post("/register", response_model=ApiResponse[TokenResponse], status_code=status.HTTP_201_CREATED)
async def register(data: RegisterRequest, request: Request, db: Annotated[AsyncSession, Depends(get_db)]):
    user = await register_client(db, data)
    await record_log(db, LogAction.register, user=user, description=f"Inscription de {user.email}", request=request)
    return ok(_token_response(user), message="Inscription réussie")


@router.post("/login", response_model=ApiResponse[TokenResponse])
async def login(data: LoginRequest, request: Request, db: Annotated[AsyncSession, Depends(get_db)]):
    user = await authenticate_user(db, data.email, data.password)
    if user is None:
        # Commit to persist failed-login counter / lockout state before
        # raising, because the dependency's exception handler will rollback.
        await db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Identifiants invalides")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Compte désactivé")

    await record_log(
        db,
        LogAction.login,
        user=user,
        description=f"Connexion de {user.email}",
        request=request,
        metadata={"role": user.role.value},
    )
    return ok(_token_response(user), message="Connexion réussie")


@router.post("/forgot-password", response_model=ApiResponse)
async def forgot_password(
    data: ForgotPasswordRequest, request: Request, db: Annotated[AsyncSession, Depends(get_db)]
):
    # The answer is identical whether or not the account exists.
    user = await get_user_by_email(db, data.email)
    if user is not None:
        await record_log(
            db, LogAction.forgot_password, user=user, description="Demande de réinitialisation", request=request
        )
    return ok(message="Si un compte existe avec cet email, un lien de réinitialisation a été envoyé")


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_me(current_user: Annotated[User, Depends(get_current_user)]):
    return ok(UserResponse.model_validate(current_user))


@router.post("/impersonate/{user_id}", response_model=ApiResponse[ImpersonationResponse])
async def impersonate(
    user_id: uuid.UUID,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    """Issue a short-lived token to view the client dashboard as that client."""
    target = await get_user(db, user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur introuvable")
    if target.role != UserRole.client:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Seuls les comptes clients peuvent être consultés")
    if not target.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Compte désactivé")

    token = create_access_token(
        str(target.id),
        target.role.value,
        expires_minutes=settings.impersonation_token_expire_minutes,
        actor_id=str(current_user.id),
    )
    await record_log(
        db,
        LogAction.impersonation_started,
        user=current_user,
        target_user=target,
        description=f"{current_user.email} consulte l'espace de {target.email}",
        request=request,
    )
    return ok(
        ImpersonationResponse(
            access_token=token, user=UserResponse.model_validate(target), impersonator_id=current_user.id
        )
    )


# ── Users (profile and administration) ───────────────────────────────

users_router = APIRouter()


@users_router.get("/profile", response_model=ApiResponse[UserResponse])
async def get_profile(current_user: Annotated[User, Depends(get_current_user)]):
    return ok(UserResponse.model_validate(current_user))


@users_router.put("/profile", response_model=ApiResponse[UserResponse])
async def update_profile(
    data: ProfileUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    changes = await update_user(db, current_user, data)
    if changes:
        await record_log(
            db,
            LogAction.profile_updated,
            user=current_user,
            description="Mise à jour du profil",
            request=request,
            metadata={"fields": sorted(changes)},
        )
    return ok(UserResponse.model_validate(current_user), message="Profil mis à jour")


@users_router.put("/password", response_model=ApiResponse)
async def change_password(
    data: PasswordChange,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    if not verify_password(data.current_password, current_user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Mot de passe actuel incorrect")

    current_user.password_hash = hash_password(data.new_password)
    await db.flush()
    await record_log(db, LogAction.password_changed, user=current_user, description="Mot de passe modifié", request=request)
    return ok(message="Mot de passe mis à jour")


@users_router.get("/all", response_model=ApiResponse[PaginatedResponse])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
):
    users, total = await get_users(db, page, page_size, role, search, is_active)
    items = [UserResponse.model_validate(u).model_dump() for u in users]
    return ok(PaginatedResponse.create(items=items, total=total, page=page, page_size=page_size))


def _check_role_grant(current_user: User, role: Optional[UserRole]) -> None:
    if role == UserRole.superadmin and current_user.role != UserRole.superadmin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Seul un superadmin peut attribuer ce rôle")


@users_router.post("/create", response_model=ApiResponse[UserResponse], status_code=status.HTTP_201_CREATED)
async def create_new_user(
    data: UserCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    _check_role_grant(current_user, data.role)
    user = await create_user(db, data)
    await record_log(
        db,
        LogAction.user_created,
        user=current_user,
        target_user=user,
        description=f"Création du compte {user.email}",
        request=request,
        metadata={"role": user.role.value},
    )
    return ok(UserResponse.model_validate(user), message="Utilisateur créé")


@users_router.get("/{user_id}", response_model=ApiResponse[UserResponse])
async def get_user_detail(
    user_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    user = await get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur introuvable")
    return ok(UserResponse.model_validate(user))


@users_router.put("/{user_id}", response_model=ApiResponse[UserResponse])
async def update_existing_user(
    user_id: uuid.UUID,
    data: UserUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    user = await get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur introuvable")
    if user.role == UserRole.superadmin and current_user.role != UserRole.superadmin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé")
    _check_role_grant(current_user, data.role)

    changes = await update_user(db, user, data)
    if changes:
        await record_log(
            db,
            LogAction.user_updated,
            user=current_user,
            target_user=user,
            description=f"Modification du compte {user.email}",
            request=request,
            metadata={"changes": changes},
        )
    return ok(UserResponse.model_validate(user), message="Utilisateur mis à jour")


@users_router.delete("/{user_id}", response_model=ApiResponse)
async def deactivate_user(
    user_id: uuid.UUID,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    user = await get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur introuvable")
    if user.id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Vous ne pouvez pas désactiver votre propre compte")
    if user.role == UserRole.superadmin and current_user.role != UserRole.superadmin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès refusé")

    user.is_active = False
    await db.flush()
    await record_log(
        db,
        LogAction.user_deactivated,
        user=current_user,
        target_user=user,
        description=f"Désactivation du compte {user.email}",
        request=request,
    )
    return ok(message="Utilisateur désactivé")
