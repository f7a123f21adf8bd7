"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /auth/register  -- create account; returns user + token pair (201)
  POST /auth/login     -- password login; returns user + token pair
  POST /auth/refresh   -- rotate refresh token; returns a new pair
  POST /auth/logout    -- revoke refresh token; always 200
  GET  /auth/me        -- current user profile (requires bearer token)

Security:
  register/login/refresh are rate-limited per client address; the limits are
  read from Settings on every request (api/limiter.py). Logout is exempt so
  it always succeeds; /auth/me draws on the per-subject authenticated budget.
  CredentialValidator.login() provides timing equalization -- use it, never
  inline a store lookup + verify_password().
  Token responses carry Cache-Control: no-store.
  Refresh tokens are accepted only in the JSON body, never from a header.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.limiter import AUTHENTICATED_SCOPE, authenticated_limit, limiter, login_limit, refresh_limit, register_limit
from api.models import AuthPayload, LoginRequest, RefreshRequest, RegisterRequest, TokenPairOut, UserOut, envelope
from auth.credentials import CredentialValidator
from auth.dependencies import get_current_user
from auth.models import TokenPair, User
from auth.rotation import RotationProtocol

# Auth policy:
# - POST /auth/register: public -- rate limited 3/hour per address
# - POST /auth/login:    public -- rate limited 5 per 15 minutes per address
# - POST /auth/refresh:  public (bears refresh token in body) -- 10 per 15 minutes
# - POST /auth/logout:   public (bears refresh token in body) -- idempotent, never rate limited
# - GET  /auth/me:       requires bearer access token (get_current_user), authenticated budget
router = APIRouter()


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _auth_response(user: User, pair: TokenPair, message: str, status_code: int = 200) -> JSONResponse:
    payload = AuthPayload(user=UserOut.from_user(user), tokens=TokenPairOut.from_pair(pair))
    return _no_store(envelope(payload, message), status_code)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
@limiter.limit(register_limit, key_func=get_remote_address)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and start its first session.

    The only endpoint that discloses whether an email is taken (409).
    """
    credentials: CredentialValidator = request.app.state.credentials
    rotation: RotationProtocol = request.app.state.rotation
    user = credentials.register(body.email, body.password, name=body.name)
    pair = rotation.start_session(user)
    return _auth_response(user, pair, "User registered successfully.", status_code=201)


@router.post("/auth/login")
@limiter.limit(login_limit, key_func=get_remote_address)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and start a new session.

    Wrong email and wrong password produce the same 401 body.
    """
    credentials: CredentialValidator = request.app.state.credentials
    rotation: RotationProtocol = request.app.state.rotation
    user = credentials.login(body.email, body.password)
    pair = rotation.start_session(user)
    return _auth_response(user, pair, "Login successful.")


@router.post("/auth/refresh")
@limiter.limit(refresh_limit, key_func=get_remote_address)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access/refresh pair.

    The presented token is dead after this call whether it succeeds or not:
    success rotates it, a reused token revokes every session of its owner.
    """
    rotation: RotationProtocol = request.app.state.rotation
    _user, pair = rotation.refresh(body.refresh_token)
    return _no_store(envelope(TokenPairOut.from_pair(pair), "Tokens refreshed successfully."))


@router.post("/auth/logout")
@limiter.exempt
def logout(request: Request, body: RefreshRequest) -> JSONResponse:
    """Revoke the presented refresh token. Always succeeds."""
    rotation: RotationProtocol = request.app.state.rotation
    rotation.logout(body.refresh_token)
    return _no_store(envelope(None, "Logged out successfully."))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me")
@limiter.shared_limit(authenticated_limit, scope=AUTHENTICATED_SCOPE)
def me(request: Request, current_user: User = Depends(get_current_user)) -> dict:
    """Return the profile of the authenticated user. 404 if the account is gone."""
    return envelope(UserOut.from_user(current_user), "User retrieved successfully.")
