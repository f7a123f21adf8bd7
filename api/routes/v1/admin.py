"""
api/routes/v1/admin.py -- Administrator-only user management endpoints.

Routes:
  GET    /admin/users                         -- paginated user list (?page, ?limit, ?role)
  GET    /admin/users/{user_id}               -- single user profile
  DELETE /admin/users/{user_id}               -- soft delete + revoke every session
  POST   /admin/users/{user_id}/change-role   -- set a user's role
  POST   /admin/users/{user_id}/verify-email  -- mark a user's email verified
  GET    /admin/stats                         -- user / session / resource counters

Every route requires role ADMIN (router-level dependency) and draws on the
caller's shared authenticated rate-limit budget. Handlers that need
the caller's identity declare the same dependency again; FastAPI resolves it
once per request.

Lockout protection:
  An admin cannot delete themselves or demote themselves, and the last active
  admin can never be deleted or demoted. Role changes take effect at the
  target's next login or refresh; access tokens already issued keep their
  role claim until they expire.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import AUTHENTICATED_SCOPE, authenticated_limit, limiter
from api.models import ChangeRoleRequest, Pagination, StatsOut, UserOut, UserPage, envelope
from auth.dependencies import require_admin
from auth.models import AccessTokenClaims, Role, User
from auth.rotation import RotationProtocol
from auth.store import RefreshTokenStore, UserStore
from core.errors import NotFound, ValidationError
from resources.store import ResourceStore

logger = logging.getLogger("tigra.api")

router = APIRouter(dependencies=[Depends(require_admin)])


def _get_user_or_404(users: UserStore, user_id: str) -> User:
    user = users.get_by_id(user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


def _guard_last_admin(users: UserStore, target: User) -> None:
    if target.role == Role.ADMIN and users.count_active_admins() <= 1:
        raise ValidationError("The last administrator cannot be removed or demoted.")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/admin/users")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    role: Optional[Role] = Query(default=None),
) -> dict:
    """Return one page of live users, newest first, optionally filtered by role."""
    users: UserStore = request.app.state.user_store
    items, total = users.list_users(page=page, limit=limit, role=role)
    payload = UserPage(
        items=[UserOut.from_user(u) for u in items],
        pagination=Pagination.build(page, limit, total),
    )
    return envelope(payload, "Users retrieved successfully.")


@router.get("/admin/users/{user_id}")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def get_user(request: Request, user_id: str) -> dict:
    users: UserStore = request.app.state.user_store
    return envelope(UserOut.from_user(_get_user_or_404(users, user_id)), "User retrieved successfully.")


@router.delete("/admin/users/{user_id}")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def delete_user(
    request: Request,
    user_id: str,
    principal: AccessTokenClaims = Depends(require_admin),
) -> dict:
    """Soft-delete a user and revoke all of their refresh tokens.

    The account's email stays reserved: a deleted user's address cannot be
    registered again.
    """
    if user_id == principal.subject:
        raise ValidationError("You cannot delete your own account.")
    users: UserStore = request.app.state.user_store
    rotation: RotationProtocol = request.app.state.rotation
    target = _get_user_or_404(users, user_id)
    _guard_last_admin(users, target)
    if not users.soft_delete(user_id):
        raise NotFound("User not found.")
    revoked = rotation.revoke_all(user_id, "user_deleted")
    logger.info("Admin %s deleted user %s (%d sessions revoked)", principal.subject, user_id, revoked)
    return envelope(None, "User deleted successfully.")


@router.post("/admin/users/{user_id}/change-role")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def change_role(
    request: Request,
    user_id: str,
    body: ChangeRoleRequest,
    principal: AccessTokenClaims = Depends(require_admin),
) -> dict:
    users: UserStore = request.app.state.user_store
    target = _get_user_or_404(users, user_id)
    if body.role != Role.ADMIN:
        if user_id == principal.subject:
            raise ValidationError("You cannot demote your own account.")
        _guard_last_admin(users, target)
    if body.role != target.role:
        users.update_user(user_id, role=body.role)
        logger.info(
            "Admin %s changed role of user %s from %s to %s",
            principal.subject,
            user_id,
            target.role.value,
            body.role.value,
        )
    updated = _get_user_or_404(users, user_id)
    return envelope(UserOut.from_user(updated), "User role updated successfully.")


@router.post("/admin/users/{user_id}/verify-email")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def verify_email(request: Request, user_id: str) -> dict:
    """Mark a user's email as verified. Idempotent."""
    users: UserStore = request.app.state.user_store
    _get_user_or_404(users, user_id)
    users.update_user(user_id, email_verified=True)
    updated = _get_user_or_404(users, user_id)
    return envelope(UserOut.from_user(updated), "Email verified successfully.")


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


@router.get("/admin/stats")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def stats(request: Request) -> dict:
    users: UserStore = request.app.state.user_store
    refresh_tokens: RefreshTokenStore = request.app.state.refresh_token_store
    resources: ResourceStore = request.app.state.resource_store
    payload = StatsOut(
        **users.stats(),
        active_sessions=refresh_tokens.count_active(),
        total_resources=resources.count(),
    )
    return envelope(payload, "Statistics retrieved successfully.")
