"""
auth/tokens.py -- Token Issuer: access JWTs and opaque refresh tokens.

Security design decisions:
  Access tokens: python-jose with HS256, signed with SECRET_KEY. Claims are
       sub (user id), role, iat, exp and typ="access". Verification is a pure
       function -- no store access -- and raises TokenInvalid / TokenExpired.

  Expiry: jose's own exp check is disabled. It allows now == exp and supports
       leeway; the rule here is strict `now < exp` against core.clock, the
       single server-side clock used for every expiry decision.

  Refresh tokens: secrets.token_urlsafe(48) -- 384 bits of entropy, no claims
       embedded. The raw value goes to the client once. The server keeps
       HMAC-SHA256(SECRET_KEY, raw) so lookup is O(1) by hash; bcrypt's
       slowness is unnecessary for high-entropy secrets. An attacker holding
       the DB cannot recompute hashes without also knowing SECRET_KEY.

Layer rule: no imports from api/ or resources/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import AccessTokenClaims, Role, TokenPair, User
from core import clock
from core.config import get_settings
from core.errors import TokenExpired, TokenInvalid

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"

# jose forces verify_exp back on when a claim is marked required, so presence
# of sub/iat/exp is checked in verify_access_token() instead.
_DECODE_OPTIONS = {"verify_exp": False}


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def create_access_token(user_id: str, role: Role, expire_seconds: int = 0) -> tuple[str, datetime]:
    """Encode a signed access JWT. Returns (token, expires_at).

    Args:
        user_id:        Opaque user id, stored as the sub claim.
        role:           Role at issue time. RBAC trusts this claim until exp.
        expire_seconds: Lifetime override. 0 (default) uses
                        Settings.access_token_expire_seconds. Negative values
                        are accepted so tests can mint already-expired tokens.
    """
    settings = get_settings()
    duration = expire_seconds if expire_seconds != 0 else settings.access_token_expire_seconds
    now = clock.utcnow().replace(microsecond=0)
    expires_at = now + timedelta(seconds=duration)
    payload = {
        "sub": user_id,
        "role": role.value,
        "typ": _ACCESS_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM), expires_at


def verify_access_token(token: str) -> AccessTokenClaims:
    """Verify signature, shape and expiry of an access token.

    Raises TokenInvalid on a bad signature or malformed claims and
    TokenExpired once the clock reaches exp. Never touches the store.
    """
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
    except JWTError as exc:
        raise TokenInvalid() from exc

    if payload.get("typ") != _ACCESS_TYPE:
        raise TokenInvalid()
    try:
        subject = str(payload["sub"])
        role = Role(payload["role"])
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc

    if not clock.utcnow() < expires_at:
        raise TokenExpired("Access token has expired.")
    return AccessTokenClaims(subject=subject, role=role, issued_at=issued_at, expires_at=expires_at)


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a new opaque refresh token (URL-safe, 64 chars)."""
    return secrets.token_urlsafe(48)


def hash_refresh_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic, so the store can look records up by hash with a UNIQUE
    index instead of scanning.
    """
    return hmac.new(
        get_settings().secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


def issue_pair(user: User) -> TokenPair:
    """Mint a fresh access/refresh pair for user.

    Persisting the refresh record is the caller's job (auth/rotation.py) so
    that issuing and recording happen inside the caller's transaction.
    """
    settings = get_settings()
    access_token, access_expires_at = create_access_token(user.id, user.role)
    refresh_expires_at = clock.utcnow() + timedelta(seconds=settings.refresh_token_expire_seconds)
    return TokenPair(
        access_token=access_token,
        refresh_token=generate_refresh_token(),
        access_expires_at=access_expires_at,
        refresh_expires_at=refresh_expires_at,
        expires_in=settings.access_token_expire_seconds,
    )
