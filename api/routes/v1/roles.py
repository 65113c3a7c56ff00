"""
api/routes/v1/roles.py -- Role management and role-permission grants.

Routes:
  GET    /api/v1/roles                                       -- SYSTEM_READ
  POST   /api/v1/roles                                       -- SYSTEM_UPDATE
  PUT    /api/v1/roles/{role_id}                             -- SYSTEM_UPDATE
  DELETE /api/v1/roles/{role_id}                             -- SYSTEM_UPDATE
  GET    /api/v1/roles/{role_id}/permissions                 -- SYSTEM_READ
  POST   /api/v1/roles/{role_id}/permissions/{permission_id} -- SYSTEM_UPDATE
  DELETE /api/v1/roles/{role_id}/permissions/{permission_id} -- SYSTEM_UPDATE

Every write ends with authz.reload_cache() so the fast path sees the new
grants on the next request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from api.models import PermissionResponse, RoleCreate, RoleResponse, RoleUpdate, RoleWithPermissions
from auth.dependencies import get_auth_service, require_permission
from auth.models import AuthContext
from auth.service import AuthService

logger = logging.getLogger("keystone.api.roles")

router = APIRouter()


def _role_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "Role not found."})


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(
    _ctx: AuthContext = Depends(require_permission("SYSTEM_READ")),
    service: AuthService = Depends(get_auth_service),
) -> list[RoleResponse]:
    return [RoleResponse.from_role(r) for r in service.role_store.list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    body: RoleCreate,
    ctx: AuthContext = Depends(require_permission("SYSTEM_UPDATE")),
    service: AuthService = Depends(get_auth_service),
) -> RoleResponse:
    """Create a role with no permissions. 409 if the name is taken."""
    role = service.role_store.create_role(body.name, body.description)
    service.authz.reload_cache()
    logger.info("Role %r created by user %d", role.name, ctx.user_id)
    return RoleResponse.from_role(role)


@router.put("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    role_id: int,
    body: RoleUpdate,
    ctx: AuthContext = Depends(require_permission("SYSTEM_UPDATE")),
    service: AuthService = Depends(get_auth_service),
) -> RoleResponse:
    fields = body.model_dump(exclude_none=True)
    role = service.role_store.update_role(role_id, **fields)
    if role is None:
        raise _role_not_found()
    service.authz.reload_cache()
    logger.info("Role %d updated by user %d", role_id, ctx.user_id)
    return RoleResponse.from_role(role)


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    role_id: int,
    ctx: AuthContext = Depends(require_permission("SYSTEM_UPDATE")),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    """Delete a role. Its user assignments and grants go with it."""
    if not service.role_store.delete_role(role_id):
        raise _role_not_found()
    service.authz.reload_cache()
    logger.info("Role %d deleted by user %d", role_id, ctx.user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Role permissions
# ---------------------------------------------------------------------------


@router.get("/roles/{role_id}/permissions", response_model=RoleWithPermissions)
def get_role_permissions(
    role_id: int,
    _ctx: AuthContext = Depends(require_permission("SYSTEM_READ")),
    service: AuthService = Depends(get_auth_service),
) -> RoleWithPermissions:
    role = service.role_store.get_role(role_id)
    if role is None:
        raise _role_not_found()
    return RoleWithPermissions(
        role=RoleResponse.from_role(role),
        permissions=[PermissionResponse.from_permission(p) for p in service.role_store.get_role_permissions(role_id)],
    )


@router.post("/roles/{role_id}/permissions/{permission_id}", response_model=RoleWithPermissions, status_code=201)
def grant_permission(
    role_id: int,
    permission_id: int,
    ctx: AuthContext = Depends(require_permission("SYSTEM_UPDATE")),
    service: AuthService = Depends(get_auth_service),
) -> RoleWithPermissions:
    """Grant a permission to a role. Idempotent; 404 for unknown ids."""
    service.role_store.assign_permission_to_role(role_id, permission_id)
    service.authz.reload_cache()
    logger.info("Permission %d granted to role %d by user %d", permission_id, role_id, ctx.user_id)
    role = service.role_store.get_role(role_id)
    return RoleWithPermissions(
        role=RoleResponse.from_role(role),
        permissions=[PermissionResponse.from_permission(p) for p in service.role_store.get_role_permissions(role_id)],
    )


@router.delete("/roles/{role_id}/permissions/{permission_id}", status_code=204)
def revoke_permission(
    role_id: int,
    permission_id: int,
    ctx: AuthContext = Depends(require_permission("SYSTEM_UPDATE")),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    if service.role_store.remove_permission_from_role(role_id, permission_id):
        service.authz.reload_cache()
        logger.info("Permission %d revoked from role %d by user %d", permission_id, role_id, ctx.user_id)
    return Response(status_code=204)
