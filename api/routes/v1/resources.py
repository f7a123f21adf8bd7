"""
api/routes/v1/resources.py -- Owner-scoped demo resources.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /resources                  -- public paginated list (?page, ?limit, ?search)
  GET    /resources/my               -- caller's own resources (any authenticated role)
  GET    /resources/{resource_id}    -- public single resource with owner (id, name)
  POST   /resources                  -- create, owned by the caller (201)
  PATCH  /resources/{resource_id}    -- owner only
  DELETE /resources/{resource_id}    -- owner only, soft delete

Ownership is checked against the token subject, independently of role: an
admin who does not own a resource gets 403 on PATCH/DELETE like anyone else.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.limiter import AUTHENTICATED_SCOPE, authenticated_limit, limiter, public_limit
from api.models import (
    Pagination,
    ResourceCreate,
    ResourceDetailOut,
    ResourceOut,
    ResourcePage,
    ResourceUpdate,
    envelope,
)
from auth.dependencies import require_any
from auth.models import AccessTokenClaims
from auth.rbac import check_owner
from auth.store import UserStore
from core.errors import NotFound, ValidationError
from resources.models import Resource
from resources.store import ResourceStore

router = APIRouter()


def _get_or_404(resources: ResourceStore, resource_id: str) -> Resource:
    resource = resources.get(resource_id)
    if resource is None:
        raise NotFound("Resource not found.")
    return resource


def _page(items: list[Resource], page: int, limit: int, total: int) -> ResourcePage:
    return ResourcePage(
        items=[ResourceOut.from_resource(r) for r in items],
        pagination=Pagination.build(page, limit, total),
    )


# ---------------------------------------------------------------------------
# Public reads
# ---------------------------------------------------------------------------


@router.get("/resources")
@limiter.limit(public_limit, key_func=get_remote_address)
def list_resources(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=200),
) -> dict:
    """Return one page of live resources, newest first."""
    resources: ResourceStore = request.app.state.resource_store
    items, total = resources.list_resources(page=page, limit=limit, search=search)
    return envelope(_page(items, page, limit, total), "Resources retrieved successfully.")


@router.get("/resources/my")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def list_my_resources(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    principal: AccessTokenClaims = Depends(require_any),
) -> dict:
    resources: ResourceStore = request.app.state.resource_store
    items, total = resources.list_resources(page=page, limit=limit, owner_id=principal.subject)
    return envelope(_page(items, page, limit, total), "Resources retrieved successfully.")


@router.get("/resources/{resource_id}")
@limiter.limit(public_limit, key_func=get_remote_address)
def get_resource(request: Request, resource_id: str) -> dict:
    """Return one resource with its owner's public profile (id, name)."""
    resources: ResourceStore = request.app.state.resource_store
    users: UserStore = request.app.state.user_store
    resource = _get_or_404(resources, resource_id)
    payload = ResourceDetailOut.from_resource_and_owner(resource, users.get_by_id(resource.owner_id))
    return envelope(payload, "Resource retrieved successfully.")


# ---------------------------------------------------------------------------
# Authenticated writes
# ---------------------------------------------------------------------------


@router.post("/resources", status_code=201)
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def create_resource(
    request: Request,
    body: ResourceCreate,
    principal: AccessTokenClaims = Depends(require_any),
) -> JSONResponse:
    resources: ResourceStore = request.app.state.resource_store
    resource_id = resources.create(
        Resource(owner_id=principal.subject, title=body.title, description=body.description)
    )
    created = _get_or_404(resources, resource_id)
    return JSONResponse(
        status_code=201,
        content=envelope(ResourceOut.from_resource(created), "Resource created successfully."),
    )


@router.patch("/resources/{resource_id}")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def update_resource(
    request: Request,
    resource_id: str,
    body: ResourceUpdate,
    principal: AccessTokenClaims = Depends(require_any),
) -> dict:
    """Update title and/or description. Fields left out of the body are untouched."""
    resources: ResourceStore = request.app.state.resource_store
    resource = _get_or_404(resources, resource_id)
    check_owner(principal.subject, resource.owner_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("title", "") is None:
        raise ValidationError("title cannot be null.")
    if changes:
        resources.update(resource_id, **changes)
    updated = _get_or_404(resources, resource_id)
    return envelope(ResourceOut.from_resource(updated), "Resource updated successfully.")


@router.delete("/resources/{resource_id}")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def delete_resource(
    request: Request,
    resource_id: str,
    principal: AccessTokenClaims = Depends(require_any),
) -> dict:
    resources: ResourceStore = request.app.state.resource_store
    resource = _get_or_404(resources, resource_id)
    check_owner(principal.subject, resource.owner_id)
    resources.soft_delete(resource_id)
    return envelope(None, "Resource deleted successfully.")
