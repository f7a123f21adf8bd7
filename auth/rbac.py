"""
auth/rbac.py -- Role-based access control: guard predicates and ownership.

Guards are plain functions tagged with what they require, not a class
hierarchy. Each guard answers one question -- does this caller role satisfy
the route? -- and knows nothing about HTTP, tokens or users.
auth/dependencies.py wires guards into FastAPI after the token has been
verified.

Two comparison modes:
  minimum (default): caller rank >= required rank. ADMIN passes USER routes.
  exact:             caller role == required role. Must be opted into per
                     route with require_role(role, exact=True).

Deny by default: an unknown or missing role never passes any guard.

Ownership is not a role. check_owner() compares the authenticated subject
to a resource's owner id and is applied by the route on top of a guard.
An admin is not an owner.

Layer rule: no imports from api/ or resources/.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from auth.models import Role
from core.errors import Forbidden

# Privilege order. Higher rank implies every capability of the lower ranks.
_ROLE_RANK: dict[Role, int] = {
    Role.GUEST: 0,
    Role.USER: 1,
    Role.ADMIN: 2,
}

Guard = Callable[[Optional[Role]], bool]


def rank(role: Role) -> int:
    return _ROLE_RANK[role]


def require_role(role: Role, exact: bool = False) -> Guard:
    """Build a guard that admits callers at (or, with exact=True, only at) role."""

    def guard(caller_role: Optional[Role]) -> bool:
        if caller_role not in _ROLE_RANK:
            return False
        if exact:
            return caller_role is role
        return _ROLE_RANK[caller_role] >= _ROLE_RANK[role]

    guard.required = role
    guard.exact = exact
    guard.__name__ = f"require_role_{role.value.lower()}{'_exact' if exact else ''}"
    return guard


def require_admin() -> Guard:
    return require_role(Role.ADMIN)


def require_user() -> Guard:
    return require_role(Role.USER)


def require_any() -> Guard:
    """Any authenticated caller ranked above GUEST, whatever roles exist."""

    def guard(caller_role: Optional[Role]) -> bool:
        return caller_role in _ROLE_RANK and _ROLE_RANK[caller_role] > _ROLE_RANK[Role.GUEST]

    guard.required = None
    guard.exact = False
    guard.__name__ = "require_any"
    return guard


def evaluate(guard: Guard, caller_role: Optional[Role]) -> bool:
    """Run a guard. Anything other than an explicit True is a deny."""
    try:
        return guard(caller_role) is True
    except (KeyError, TypeError, ValueError):
        return False


def enforce(guard: Guard, caller_role: Optional[Role]) -> None:
    """Raise Forbidden unless the guard admits caller_role."""
    if not evaluate(guard, caller_role):
        raise Forbidden("Insufficient role for this action.")


def check_owner(subject_id: str, owner_id: str) -> None:
    """Raise Forbidden unless subject_id owns the resource. Role is irrelevant."""
    if not subject_id or subject_id != owner_id:
        raise Forbidden("You do not own this resource.")
