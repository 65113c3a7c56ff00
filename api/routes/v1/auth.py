"""
api/routes/v1/auth.py -- Session endpoints: login, logout, refresh, me, register.

Routes:
  POST /api/v1/auth/login           -- email + password; returns a bearer token
  POST /api/v1/auth/logout          -- blacklists the presented token
  POST /api/v1/auth/refresh-token   -- swaps the presented token for a new one
  GET  /api/v1/auth/me              -- identity of the current token
  POST /api/v1/auth/register        -- self-registration with the default role

Security:
  POST /login is rate-limited per IP (settings.login_rate_limit).
  AuthService.login() runs bcrypt for unknown emails too -- never inline a
  lookup + verify here, that re-introduces the timing leak.
  Unknown email and wrong password share one message.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, LogoutResponse, RegisterRequest, SessionUser, TokenResponse, UserResponse
from auth.dependencies import get_auth_context, get_auth_service
from auth.models import AuthContext, InvalidationResult, IssuedToken, User
from auth.service import AuthService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:          public, rate limited
# - POST /api/v1/auth/logout:         requires a bearer token this service signed (live, expired or blacklisted)
# - POST /api/v1/auth/refresh-token:  requires auth (get_auth_context)
# - GET  /api/v1/auth/me:             requires auth (get_auth_context)
# - POST /api/v1/auth/register:       public when settings.self_registration_enabled
router = APIRouter()


def _token_response(user: User, roles: list[str], issued: IssuedToken) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=issued.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=issued.expires_in,
            expires_at=issued.expires_at,
            user=SessionUser(id=user.id, name=user.name, email=user.email, roles=roles),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(login_rate_limit)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; return a signed session token."""
    result = service.login(body.email, body.password)
    if result is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    issued = service.issue_session(result.user, result.roles)
    return _token_response(result.user, result.roles, issued)


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Create an account holding only the default role.

    Raises 409 (via ConflictError) if the email is already registered.
    """
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    user = service.register(body.name, body.email, body.password)
    return UserResponse.from_user(user, service.role_names(user.id))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=LogoutResponse)
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> LogoutResponse:
    """Blacklist the bearer token until it expires.

    Logging out twice with the same token succeeds both times; the second
    answer says already_invalid, as does an expired token. Forged or malformed
    tokens are 401.
    """
    result = service.logout(request.headers.get("Authorization"))
    if result is InvalidationResult.ALREADY_INVALID:
        return LogoutResponse(message="Token already invalidated.", already_invalid=True)
    return LogoutResponse(message="Logged out.")


@router.post("/auth/refresh-token", response_model=TokenResponse)
def refresh_token(
    ctx: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Invalidate the presented token and issue a new one with current roles."""
    session = service.refresh(ctx)
    return _token_response(session.user, session.roles, session.token)


@router.get("/auth/me", response_model=UserResponse)
def me(
    ctx: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Return the current user's profile and live role list."""
    user = service.user_store.get_by_id(ctx.user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return UserResponse.from_user(user, service.role_names(user.id))
