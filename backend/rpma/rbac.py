from __future__ import annotations

from uuid import UUID

from . import models
from .errors import AuthorizationError
from .statuses import UserRole

# purpose: centralize the access guard consulted before every intervention operation
# status: production

_UNRESTRICTED_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPERVISOR})


def _role_of(user: models.User) -> UserRole | None:
    try:
        return UserRole(user.role)
    except ValueError:
        return None


def can_access(technician_id: UUID | None, user: models.User | None) -> bool:
    """Return whether ``user`` may read or mutate work owned by ``technician_id``.

    Admins and supervisors see everything, unassigned work included. A
    technician only sees interventions assigned to them. Any other role is
    denied.
    """

    if user is None or user.is_active is False:
        return False
    role = _role_of(user)
    if role in _UNRESTRICTED_ROLES:
        return True
    if role == UserRole.TECHNICIAN:
        return technician_id is not None and technician_id == user.id
    return False


def ensure_intervention_access(intervention: models.Intervention, user: models.User) -> None:
    if not can_access(intervention.technician_id, user):
        raise AuthorizationError("Not authorized to access this intervention")


def is_supervisor(user: models.User) -> bool:
    return user.is_active is not False and _role_of(user) in _UNRESTRICTED_ROLES


def ensure_supervisor(user: models.User, action: str) -> None:
    if not is_supervisor(user):
        raise AuthorizationError(f"Only supervisors or admins may {action}")
