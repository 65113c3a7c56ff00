"""
api/routes/v1/permissions.py -- Read-only view of the permission catalog.

Routes:
  GET /api/v1/permissions      -- SYSTEM_READ; optional ?category= filter
  GET /api/v1/permissions/me   -- any authenticated user; their effective permissions
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from api.models import MyPermissionsResponse, PermissionResponse
from auth.dependencies import get_auth_context, get_auth_service, require_permission
from auth.models import AuthContext
from auth.permissions import PermissionCategory
from auth.service import AuthService

router = APIRouter()


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(
    category: Optional[PermissionCategory] = None,
    _ctx: AuthContext = Depends(require_permission("SYSTEM_READ")),
    service: AuthService = Depends(get_auth_service),
) -> list[PermissionResponse]:
    permissions = service.role_store.list_permissions(category.value if category else None)
    return [PermissionResponse.from_permission(p) for p in permissions]


@router.get("/permissions/me", response_model=MyPermissionsResponse)
def my_permissions(
    ctx: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
) -> MyPermissionsResponse:
    """Live effective permissions (union over the caller's current roles)."""
    return MyPermissionsResponse(
        user_id=ctx.user_id,
        roles=service.role_names(ctx.user_id),
        permissions=[PermissionResponse.from_permission(p) for p in service.role_store.get_user_permissions(ctx.user_id)],
    )
