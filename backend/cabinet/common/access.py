"""
Who may read or write which record.

Each predicate takes the acting user and the loaded record and returns a
bool; routers turn ``False`` into a 403. Admins and superadmins pass every
check.
"""

import uuid
from collections.abc import Iterable
from typing import TYPE_CHECKING

from cabinet.auth.models import ADMIN_ROLES, User
from cabinet.dossiers.ownership import emails_match, is_owned_by, owner_of

if TYPE_CHECKING:
    from cabinet.documents.models import Document
    from cabinet.dossiers.models import Dossier
    from cabinet.messages.models import Message
    from cabinet.scheduling.models import RendezVous
    from cabinet.tasks.models import Task


def is_admin(user: User) -> bool:
    return user.role in ADMIN_ROLES


def can_access_dossier(user: User, dossier: "Dossier") -> bool:
    if is_admin(user):
        return True
    if dossier.assigned_to is not None and dossier.assigned_to == user.id:
        return True
    return is_owned_by(owner_of(dossier), user)


def can_access_task(user: User, task: "Task") -> bool:
    return is_admin(user) or user.id in (task.created_by, task.assigned_to)


def can_access_document(user: User, document: "Document") -> bool:
    return is_admin(user) or document.owner_id == user.id


def can_access_message(user: User, message: "Message", recipient_ids: Iterable[uuid.UUID]) -> bool:
    if is_admin(user) or message.sender_id == user.id:
        return True
    return user.id in set(recipient_ids)


def can_access_appointment(user: User, appointment: "RendezVous") -> bool:
    if is_admin(user):
        return True
    if appointment.user_id is not None:
        return appointment.user_id == user.id
    return emails_match(appointment.email, user.email)
