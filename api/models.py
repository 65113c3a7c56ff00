"""
API request and response models for Keystone REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two --
in particular, password_hash never appears in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Permission, Role, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# bcrypt only looks at the first 72 bytes.
_PASSWORD_MAX = 72

# Role names: letters, digits, underscore, dash.
ROLE_NAME_PATTERN = r"^[A-Za-z0-9_\-]{1,50}$"

# Loose on purpose: one @, no whitespace, a dot in the domain.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _check_password_bytes(value: Optional[str]) -> Optional[str]:
    """bcrypt rejects secrets over 72 bytes; multibyte characters count extra."""
    if value is not None and len(value.encode("utf-8")) > _PASSWORD_MAX:
        raise ValueError(f"password must be at most {_PASSWORD_MAX} bytes")
    return value


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)


class SessionUser(BaseModel):
    id: int
    name: str
    email: str
    roles: list[str]


class TokenResponse(BaseModel):
    """Returned by login and refresh-token."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: int
    user: SessionUser


class LogoutResponse(BaseModel):
    message: str
    already_invalid: bool = False


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users (admin create)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=_PASSWORD_MAX)
    roles: Optional[list[str]] = Field(default=None, description="Role names. Omit for the default role.")

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)


class UserUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    roles: list[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User, roles: list[str]) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            roles=roles,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(pattern=ROLE_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)


class RoleUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, pattern=ROLE_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name, description=role.description)


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    key: str
    category: str
    action: str
    description: Optional[str]

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            key=permission.key,
            category=permission.category,
            action=permission.action,
            description=permission.description,
        )


class RoleWithPermissions(BaseModel):
    role: RoleResponse
    permissions: list[PermissionResponse]


class UserRoleResponse(BaseModel):
    user_id: int
    role_id: int


class MyPermissionsResponse(BaseModel):
    user_id: int
    roles: list[str]
    permissions: list[PermissionResponse]


# ---------------------------------------------------------------------------
# Envelope / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
