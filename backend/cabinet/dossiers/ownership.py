"""
Dossier ownership.

A dossier belongs either to a registered user or to an anonymous contact
(name, first name, email) who has no account yet. ``owner_of`` and
``apply_owner`` are the only places that read or write the underlying
columns; everything else works with the ``Owner`` union.
"""

import enum
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.auth.models import User
from cabinet.auth.service import get_user, get_user_by_email

if TYPE_CHECKING:
    from cabinet.dossiers.models import Dossier


class OwnerKind(str, enum.Enum):
    registered = "registered"
    anonymous = "anonymous"


@dataclass(frozen=True)
class RegisteredOwner:
    user_id: uuid.UUID


@dataclass(frozen=True)
class AnonymousOwner:
    last_name: str
    first_name: str
    email: str
    phone: Optional[str] = None


Owner = Union[RegisteredOwner, AnonymousOwner]


def emails_match(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left.strip().casefold() == right.strip().casefold()


def owner_of(dossier: "Dossier") -> Owner:
    if dossier.owner_kind == OwnerKind.registered:
        return RegisteredOwner(user_id=dossier.user_id)
    return AnonymousOwner(
        last_name=dossier.client_last_name,
        first_name=dossier.client_first_name,
        email=dossier.client_email,
        phone=dossier.client_phone,
    )


def apply_owner(dossier: "Dossier", owner: Owner) -> None:
    if isinstance(owner, RegisteredOwner):
        dossier.owner_kind = OwnerKind.registered
        dossier.user_id = owner.user_id
        dossier.client_last_name = None
        dossier.client_first_name = None
        dossier.client_email = None
        dossier.client_phone = None
    elif isinstance(owner, AnonymousOwner):
        dossier.owner_kind = OwnerKind.anonymous
        dossier.user_id = None
        dossier.client_last_name = owner.last_name.strip()
        dossier.client_first_name = owner.first_name.strip()
        dossier.client_email = owner.email.strip().lower()
        dossier.client_phone = owner.phone
    else:
        raise TypeError(f"Unsupported owner: {owner!r}")


def is_owned_by(owner: Owner, user: User) -> bool:
    """Anonymous dossiers are matched by email so a client who registers later sees them."""
    if isinstance(owner, RegisteredOwner):
        return owner.user_id == user.id
    if isinstance(owner, AnonymousOwner):
        return emails_match(owner.email, user.email)
    raise TypeError(f"Unsupported owner: {owner!r}")


async def resolve_owner_user(db: AsyncSession, owner: Owner) -> Optional[User]:
    """Account to notify for this owner, if there is one."""
    if isinstance(owner, RegisteredOwner):
        return await get_user(db, owner.user_id)
    if isinstance(owner, AnonymousOwner):
        return await get_user_by_email(db, owner.email)
    raise TypeError(f"Unsupported owner: {owner!r}")


def owner_display_name(owner: Owner, user: Optional[User] = None) -> str:
    if isinstance(owner, AnonymousOwner):
        return f"{owner.first_name} {owner.last_name}"
    return user.full_name if user is not None else str(owner.user_id)
