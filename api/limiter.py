"""
api/limiter.py -- Rate Limit Gate: the shared slowapi limiter and its keys.

Import this in api/main.py (to mount SlowAPIMiddleware and translate
RateLimitExceeded) and in the route modules (to apply per-route limits with
@limiter.limit()).

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module would
get its own isolated counter and limits would never trigger across modules.

Counters:
  slowapi delegates to the `limits` package. Its storages implement atomic
  increment-with-expiry (a lock around a dict for memory://, INCR + EXPIRE
  for redis://), which is the only primitive the gate needs. Fixed-window
  strategy: a counter lives exactly one window, so keys never pile up.
  RATE_LIMIT_STORAGE_URI picks the backend without code changes.

Keys:
  Unauthenticated routes (register/login/refresh, public reads) key by
  client address. Authenticated routes key by "user:<sub>" when the request
  carries a valid access token, and fall back to the address. They share one
  budget per subject (AUTHENTICATED_SCOPE) rather than one per route.
  Logout is exempt: it must always succeed.

Limits:
  Route limits are callables read per request from Settings, so operators
  (and tests) can tune them without re-importing route modules.
"""

from __future__ import annotations

import logging
import time

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from auth.dependencies import bearer_token
from auth.tokens import verify_access_token
from core.config import get_settings
from core.errors import AppError

logger = logging.getLogger("tigra.limiter")


def subject_or_address(request: Request) -> str:
    """Key authenticated traffic by subject, everything else by client address.

    Token problems are not this function's concern -- an invalid token just
    falls back to the address key and the auth dependency rejects the request
    afterwards.
    """
    token = bearer_token(request)
    if token:
        try:
            return f"user:{verify_access_token(token).subject}"
        except AppError:
            pass
    return get_remote_address(request)


# ---------------------------------------------------------------------------
# Per-route limit providers
# ---------------------------------------------------------------------------


def register_limit() -> str:
    return get_settings().register_rate_limit


def login_limit() -> str:
    return get_settings().login_rate_limit


def refresh_limit() -> str:
    return get_settings().refresh_rate_limit


def public_limit() -> str:
    return get_settings().public_rate_limit


def authenticated_limit() -> str:
    return get_settings().authenticated_rate_limit


# Scope shared by every authenticated route: one budget per subject, not per route.
AUTHENTICATED_SCOPE = "authenticated"

_settings = get_settings()

# default_limits only take effect when SlowAPIMiddleware can resolve the
# endpoint; included routers hide it, so routes opt in with a decorator.
limiter = Limiter(
    key_func=subject_or_address,
    default_limits=[authenticated_limit],
    storage_uri=_settings.rate_limit_storage_uri,
    strategy="fixed-window",
    enabled=_settings.rate_limit_enabled,
)


def retry_after_seconds(request: Request, exc: RateLimitExceeded) -> int:
    """Seconds until the exhausted window resets.

    slowapi records the failing (limit, key) on request.state.view_rate_limit;
    the storage knows when that window expires. Falls back to the full window
    length if the stats are unavailable.
    """
    view = getattr(request.state, "view_rate_limit", None)
    if view is not None:
        item, args = view
        reset_at, _remaining = request.app.state.limiter.limiter.get_window_stats(item, *args)
        return max(1, int(reset_at - time.time()) + 1)
    return int(exc.limit.limit.get_expiry())
