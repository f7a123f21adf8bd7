"""
API request and response models for the Tigra auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
resources/models.py, which own the internal domain representation. Route
handlers map between the two.

Wire format: JSON keys are camelCase (refreshToken, emailVerified). Models
accept either spelling on input (populate_by_name) and always emit camelCase.

Envelope: every response body is
    {"success": bool, "message"?: str, "data": <payload> | null, "error"?: {"code", "message"}}
built by envelope() / error_envelope() so no route assembles it by hand.
"""

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, TokenPair, User
from auth.passwords import MAX_PASSWORD_BYTES
from resources.models import Resource

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", a dot in the domain, no whitespace. Deliverability
# is a mail concern, not an auth one.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(_WireModel):
    """Request body for POST /auth/register.

    Passwords are capped by UTF-8 byte length, not characters: bcrypt only
    reads 72 bytes, and a 30-character password of 3-byte glyphs is already
    90 bytes.
    """

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8)
    name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return value


class LoginRequest(_WireModel):
    """Request body for POST /auth/login. Only shape is checked -- never strength."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(_WireModel):
    """Request body for POST /auth/refresh and POST /auth/logout."""

    refresh_token: str = Field(min_length=1, max_length=512)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserOut(_WireModel):
    """Public user profile. There is no password field, by construction."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str]
    role: Role
    email_verified: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(**user.public())


class TokenPairOut(_WireModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairOut":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token, expires_in=pair.expires_in)


class AuthPayload(_WireModel):
    """data payload for register and login: the user plus a fresh token pair."""

    model_config = ConfigDict(frozen=True)

    user: UserOut
    tokens: TokenPairOut


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class ChangeRoleRequest(_WireModel):
    role: Role


class Pagination(_WireModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total_items: int) -> "Pagination":
        total_pages = math.ceil(total_items / limit) if total_items else 0
        return cls(
            page=page,
            limit=limit,
            total_items=total_items,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


class UserPage(_WireModel):
    model_config = ConfigDict(frozen=True)

    items: list[UserOut]
    pagination: Pagination


class StatsOut(_WireModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    users_by_role: dict[str, int]
    verified_users: int
    deleted_users: int
    active_sessions: int
    total_resources: int


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class ResourceCreate(_WireModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)


class ResourceUpdate(_WireModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)


class ResourceOut(_WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    title: str
    description: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceOut":
        return cls(
            id=resource.id,
            owner_id=resource.owner_id,
            title=resource.title,
            description=resource.description,
            created_at=resource.created_at,
            updated_at=resource.updated_at,
        )


class ResourceOwnerOut(_WireModel):
    """Public projection of a resource owner. No email, no role."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str]


class ResourceDetailOut(ResourceOut):
    # None when the owning account has since been deleted.
    owner: Optional[ResourceOwnerOut]

    @classmethod
    def from_resource_and_owner(cls, resource: Resource, owner: Optional[User]) -> "ResourceDetailOut":
        base = ResourceOut.from_resource(resource).model_dump()
        owner_out = ResourceOwnerOut(id=owner.id, name=owner.name) if owner is not None else None
        return cls(**base, owner=owner_out)


class ResourcePage(_WireModel):
    model_config = ConfigDict(frozen=True)

    items: list[ResourceOut]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class ApiResponse(BaseModel):
    """Top-level envelope for every response, success or failure."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: Optional[str] = None
    data: Any = None
    error: Optional[ErrorDetail] = None


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    """Build a success envelope. Pydantic payloads are dumped in wire format."""
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, mode="json")
    body = ApiResponse(success=True, message=message, data=data).model_dump(exclude={"error"})
    if body["message"] is None:
        del body["message"]
    return body


def error_envelope(code: str, message: str) -> dict:
    """Build a failure envelope. data is always null on failure."""
    return ApiResponse(
        success=False,
        message=message,
        data=None,
        error=ErrorDetail(code=code, message=message),
    ).model_dump()


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
