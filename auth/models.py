"""
auth/models.py -- Domain dataclasses for authentication and RBAC entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the token service and the authorization engine do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class User:
    """A registered account.

    password_hash is a bcrypt hash and never leaves the auth layer -- API
    response models copy the other fields explicitly.
    """

    name: str
    email: str
    password_hash: str
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Role:
    """A named bundle of permissions. name is globally unique."""

    name: str
    description: str | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class Permission:
    """An atomic capability: a unique key scoped to a category and action."""

    key: str
    category: str
    action: str
    description: str | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class UserRole:
    """Junction row: user_id holds role_id."""

    user_id: int
    role_id: int


@dataclass(frozen=True)
class RolePermission:
    """Junction row: role_id grants permission_id."""

    role_id: int
    permission_id: int


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------


class TokenStatus(str, Enum):
    """Outcome of TokenService.verify().

    Callers at the HTTP boundary only care about VALID vs. not; the distinct
    failure members exist so logs can say why a token was rejected.
    """

    VALID = "valid"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    BLACKLISTED = "blacklisted"
    BAD_SIGNATURE = "bad_signature"


class InvalidationResult(str, Enum):
    INVALIDATED = "invalidated"
    ALREADY_INVALID = "already_invalid"


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token plus its lifetime (epoch seconds)."""

    token: str
    issued_at: int
    expires_at: int

    @property
    def expires_in(self) -> int:
        return self.expires_at - self.issued_at


@dataclass(frozen=True)
class TokenVerification:
    """Typed result of verifying a token. claims is empty unless VALID."""

    status: TokenStatus
    claims: dict = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.status is TokenStatus.VALID


@dataclass(frozen=True)
class AuthContext:
    """The verified identity of the current request.

    Built once by the guard from a VALID token and attached to
    request.state.auth. Downstream code reads it from one place only.
    roles is the snapshot taken at token issue time -- the authorization
    engine treats it as a fast-path hint, never as the source of truth.
    """

    user_id: int
    email: str
    name: str
    roles: tuple[str, ...]
    token: str
    issued_at: int
    expires_at: int

    @classmethod
    def from_claims(cls, token: str, claims: dict) -> AuthContext:
        return cls(
            user_id=int(claims["user_id"]),
            email=claims.get("email", ""),
            name=claims.get("name", ""),
            roles=tuple(claims.get("roles") or ()),
            token=token,
            issued_at=int(claims.get("iat", 0)),
            expires_at=int(claims["exp"]),
        )
