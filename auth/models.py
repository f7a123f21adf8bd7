"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
protocol modules do the work; these types only own the domain shape.

Role ordering lives in auth/rbac.py, not on the enum, so the privilege table
sits next to the guards that read it.

Layer rule: no imports from api/ or resources/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    GUEST = "GUEST"
    USER = "USER"
    ADMIN = "ADMIN"


class TokenStatus(str, Enum):
    """Lifecycle of one refresh-token chain link.

    ACTIVE is the only non-terminal state. A record leaves it exactly once.
    """

    ACTIVE = "active"
    ROTATED = "rotated"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass
class User:
    """An account that can authenticate.

    email is always stored lower-cased; uniqueness is therefore
    case-insensitive. password_hash is a bcrypt hash and must never leave the
    service -- use public() when building any outward representation.

    id is None before the record is written to the database.
    """

    email: str
    password_hash: str
    role: Role = Role.USER
    name: str | None = None
    id: str | None = None
    email_verified: bool = False
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    deleted_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def public(self) -> dict:
        """Return the caller-safe projection (no password hash)."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "email_verified": self.email_verified,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class RefreshTokenRecord:
    """Server-side record of one issued refresh token.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token); the raw value is handed
    to the client once and never persisted. replaced_by_token_id points at
    the successor created by a rotation, forming a singly-linked chain back
    to the original login.
    """

    user_id: str
    token_hash: str
    issued_at: str  # ISO 8601
    expires_at: str  # ISO 8601
    id: str | None = None
    status: TokenStatus = TokenStatus.ACTIVE
    revoked_at: str | None = None
    replaced_by_token_id: str | None = None
    revoke_reason: str | None = None  # "rotated" | "logout" | "reuse_detected" | "expired" | "user_deleted"


@dataclass(frozen=True)
class AccessTokenClaims:
    """Verified claims of an access token. Never persisted."""

    subject: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    """Freshly issued credentials. refresh_token is the raw value -- return it once."""

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    expires_in: int  # access token lifetime in seconds
