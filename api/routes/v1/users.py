"""
api/routes/v1/users.py -- User accounts and user-role assignment.

Routes:
  GET    /api/v1/users                           -- USER_READ
  POST   /api/v1/users                           -- USER_CREATE
  GET    /api/v1/users/{user_id}                 -- self, or USER_READ
  PUT    /api/v1/users/{user_id}                 -- self, or USER_UPDATE
  DELETE /api/v1/users/{user_id}                 -- USER_DELETE
  GET    /api/v1/users/{user_id}/roles           -- self, or USER_READ
  POST   /api/v1/users/{user_id}/roles/{role_id} -- USER_ASSIGN_ROLE
  DELETE /api/v1/users/{user_id}/roles/{role_id} -- USER_ASSIGN_ROLE

Role assignment and removal are idempotent. Changes apply to the next
permission check immediately (the engine's repository fallback), while tokens
keep the role snapshot they were issued with until refreshed.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from api.models import RoleResponse, UserCreate, UserResponse, UserRoleResponse, UserUpdate
from auth.dependencies import get_auth_service, require_permission, require_self_or_permission
from auth.models import AuthContext
from auth.service import AuthService

logger = logging.getLogger("keystone.api.users")

router = APIRouter()


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": f"{what} not found."})


@router.get("/users", response_model=list[UserResponse])
def list_users(
    _ctx: AuthContext = Depends(require_permission("USER_READ")),
    service: AuthService = Depends(get_auth_service),
) -> list[UserResponse]:
    return [UserResponse.from_user(u, service.role_names(u.id)) for u in service.user_store.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    body: UserCreate,
    ctx: AuthContext = Depends(require_permission("USER_CREATE")),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Create an account. roles omitted means the default role.

    Every named role must exist; the request is rejected before the account
    is written otherwise.
    """
    if body.roles:
        missing = [name for name in body.roles if service.role_store.get_role_by_name(name) is None]
        if missing:
            raise HTTPException(
                status_code=400,
                detail={"code": "unknown_role", "message": f"Unknown roles: {', '.join(missing)}."},
            )
    user = service.create_user(body.name, body.email, body.password, roles=body.roles)
    logger.info("User %d created by user %d", user.id, ctx.user_id)
    return UserResponse.from_user(user, service.role_names(user.id))


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    _ctx: AuthContext = Depends(require_self_or_permission("USER_READ")),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    user = service.user_store.get_by_id(user_id)
    if user is None:
        raise _not_found("User")
    return UserResponse.from_user(user, service.role_names(user.id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    body: UserUpdate,
    _ctx: AuthContext = Depends(require_self_or_permission("USER_UPDATE")),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Update name, email and/or password. 409 if the new email is taken."""
    user = service.update_user(user_id, name=body.name, email=body.email, password=body.password)
    if user is None:
        raise _not_found("User")
    return UserResponse.from_user(user, service.role_names(user.id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    user_id: int,
    ctx: AuthContext = Depends(require_permission("USER_DELETE")),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    if user_id == ctx.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    if not service.user_store.delete_user(user_id):
        raise _not_found("User")
    service.authz.revoke_role_snapshots(user_id)
    logger.info("User %d deleted by user %d", user_id, ctx.user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User roles
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/roles", response_model=list[RoleResponse])
def get_user_roles(
    user_id: int,
    _ctx: AuthContext = Depends(require_self_or_permission("USER_READ")),
    service: AuthService = Depends(get_auth_service),
) -> list[RoleResponse]:
    if service.user_store.get_by_id(user_id) is None:
        raise _not_found("User")
    return [RoleResponse.from_role(r) for r in service.role_store.get_user_roles(user_id)]


@router.post("/users/{user_id}/roles/{role_id}", response_model=UserRoleResponse, status_code=201)
def assign_role(
    user_id: int,
    role_id: int,
    ctx: AuthContext = Depends(require_permission("USER_ASSIGN_ROLE")),
    service: AuthService = Depends(get_auth_service),
) -> UserRoleResponse:
    """Grant a role. Granting a role the user already holds is a no-op success."""
    pair = service.role_store.assign_role_to_user(user_id, role_id)
    logger.info("Role %d assigned to user %d by user %d", role_id, user_id, ctx.user_id)
    return UserRoleResponse(user_id=pair.user_id, role_id=pair.role_id)


@router.delete("/users/{user_id}/roles/{role_id}", status_code=204)
def remove_role(
    user_id: int,
    role_id: int,
    ctx: AuthContext = Depends(require_permission("USER_ASSIGN_ROLE")),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    """Revoke a role. Revoking a role the user does not hold also answers 204."""
    if service.role_store.remove_role_from_user(user_id, role_id):
        service.authz.revoke_role_snapshots(user_id)
        logger.info("Role %d removed from user %d by user %d", role_id, user_id, ctx.user_id)
    return Response(status_code=204)
