"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and RBAC.

Evaluation order for a protected route, each step short-circuiting:
  1. token presence  -- Authorization: Bearer <token>, else Unauthorized (401)
  2. token validity  -- auth.tokens.verify_access_token, TokenInvalid/TokenExpired (401)
  3. role sufficiency -- auth.rbac guard, Forbidden (403)
  4. route handler

Only the Authorization header is read. Refresh tokens travel in request
bodies and are never accepted here.

get_principal() is stateless: it trusts the verified claims and does not hit
the store. get_current_user() adds the store lookup for routes that need the
full profile (and must 404 when the account is gone).

Layer rule: no imports from api/ or resources/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth import rbac
from auth.models import AccessTokenClaims, User
from auth.tokens import verify_access_token
from core.errors import NotFound, Unauthorized


def bearer_token(request: Request) -> str | None:
    """Return the raw bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_principal(request: Request) -> AccessTokenClaims:
    """Require a valid access token and return its claims.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: AccessTokenClaims = Depends(get_principal)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise Unauthorized()
    claims = verify_access_token(token)
    request.state.principal = claims
    return claims


def get_current_user(request: Request, principal: AccessTokenClaims = Depends(get_principal)) -> User:
    """Require a valid token whose subject still exists. 404 if the account is gone."""
    user = request.app.state.user_store.get_by_id(principal.subject)
    if user is None:
        raise NotFound("User not found.")
    return user


def requires(guard: rbac.Guard):
    """Turn an RBAC guard into a FastAPI dependency returning the claims.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(principal: AccessTokenClaims = Depends(requires(rbac.require_admin()))): ...
    """

    def dependency(principal: AccessTokenClaims = Depends(get_principal)) -> AccessTokenClaims:
        rbac.enforce(guard, principal.role)
        return principal

    dependency.__name__ = f"requires_{getattr(guard, '__name__', 'guard')}"
    return dependency


require_admin = requires(rbac.require_admin())
require_user = requires(rbac.require_user())
require_any = requires(rbac.require_any())
