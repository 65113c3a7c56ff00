"""
auth/dependencies.py -- FastAPI Depends() helpers: the per-request auth guard.

Each request walks a small state machine:

  Unauthenticated --(valid bearer token)--> Authenticated --(requirement met)--> Authorized
         |                                        |
         +--> 401 "Authentication required."      +--> 403 "Insufficient permissions."
              401 "Invalid or expired token."

get_auth_context() performs the first transition and attaches the resulting
AuthContext to request.state.auth -- the single place downstream code reads
the caller's identity from. The require_* factories build dependencies that
perform both transitions and return the AuthContext.

Nothing persists between requests except what the token itself carries and
the blacklist.

All dependencies here are plain `def`: FastAPI runs them in its threadpool,
so token verification and repository fallbacks never block the event loop.

Layer rule: no imports from api/. This module may import from fastapi because
it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.authorization import (
    CategoryRequirement,
    PermissionRequirement,
    Requirement,
    RoleRequirement,
    SelfOrPermissionRequirement,
)
from auth.models import AuthContext
from auth.service import AuthService
from core.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger("keystone.auth.guard")


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_auth_context(request: Request) -> AuthContext:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ctx: AuthContext = Depends(get_auth_context)): ...
    """
    cached = getattr(request.state, "auth", None)
    if cached is not None:
        return cached
    service = get_auth_service(request)
    try:
        ctx = service.authenticate_request(request.headers.get("Authorization"))
    except AuthenticationError as exc:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.reason)
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    request.state.auth = ctx
    return ctx


def _authorize(request: Request, ctx: AuthContext, requirement: Requirement) -> AuthContext:
    try:
        get_auth_service(request).authorize_request(ctx, requirement)
    except AuthorizationError as exc:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": exc.message},
        ) from exc
    return ctx


def require_roles(*roles: str) -> Callable[[Request], AuthContext]:
    """Dependency factory: caller must hold ANY of roles.

        @router.post("/roles", dependencies=[Depends(require_roles("admin"))])
    """
    requirement = RoleRequirement(tuple(roles))

    def dependency(request: Request) -> AuthContext:
        return _authorize(request, get_auth_context(request), requirement)

    return dependency


def require_permission(key: str) -> Callable[[Request], AuthContext]:
    """Dependency factory: caller must hold permission key."""
    requirement = PermissionRequirement(key)

    def dependency(request: Request) -> AuthContext:
        return _authorize(request, get_auth_context(request), requirement)

    return dependency


def require_category_permission(category: str, action: str | None = None) -> Callable[[Request], AuthContext]:
    """Dependency factory: caller must hold any permission in category (and action)."""
    requirement = CategoryRequirement(getattr(category, "value", category), getattr(action, "value", action))

    def dependency(request: Request) -> AuthContext:
        return _authorize(request, get_auth_context(request), requirement)

    return dependency


def require_self_or_permission(key: str, owner_param: str = "user_id") -> Callable[[Request], AuthContext]:
    """Dependency factory: the path parameter owner_param is the caller's own id, or caller holds key.

        @router.get("/users/{user_id}")
        def get_user(user_id: int, ctx: AuthContext = Depends(require_self_or_permission("USER_READ"))): ...

    A non-integer owner id can never match the caller, so it falls through to
    the permission check.
    """

    def dependency(request: Request) -> AuthContext:
        ctx = get_auth_context(request)
        try:
            owner_id = int(request.path_params[owner_param])
        except (KeyError, ValueError):
            owner_id = -1
        return _authorize(request, ctx, SelfOrPermissionRequirement(owner_id=owner_id, key=key))

    return dependency
