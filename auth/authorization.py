"""
auth/authorization.py -- Permission resolution: does this request's user hold role/permission X?

Two sources of truth, one of them a cache:

  RolePermissionCache  -- role name -> permission keys, loaded from the
                          database right after RoleStore.sync_catalog(). It
                          lets the hot path answer from the roles embedded in
                          the token without a query.
  RoleStore            -- the live repository. Consulted whenever the fast
                          path does not already say ALLOW (no roles in the
                          token, or the token's roles do not grant it).

The fast path can only ALLOW. A DENY always comes from the repository, so a
role granted after the token was issued still takes effect immediately.
Because the cache is loaded from the same rows the repository reads, the two
agree at steady state; call AuthorizationEngine.reload_cache() after editing
roles or grants.

Revoking a role from a user cannot change the roles already embedded in
their tokens. AuthorizationEngine.revoke_role_snapshots(user_id) marks the
time of the change; tokens issued at or before it skip the fast path and
are answered by the repository alone.

Self-access override: SelfOrPermissionRequirement allows a user to act on
their own record (owner_id == ctx.user_id) before any permission lookup.

Errors: repository failures propagate. They are never converted to DENY.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Union

from auth.models import AuthContext
from auth.role_store import RoleStore

logger = logging.getLogger("keystone.auth.authz")


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


# ---------------------------------------------------------------------------
# Requirements -- what a route declares it needs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleRequirement:
    """Caller must hold ANY of roles."""

    roles: tuple[str, ...]


@dataclass(frozen=True)
class PermissionRequirement:
    key: str


@dataclass(frozen=True)
class CategoryRequirement:
    """Caller must hold any permission in category (with action, if given)."""

    category: str
    action: str | None = None


@dataclass(frozen=True)
class SelfOrPermissionRequirement:
    """Caller is owner_id, or holds key."""

    owner_id: int
    key: str


Requirement = Union[RoleRequirement, PermissionRequirement, CategoryRequirement, SelfOrPermissionRequirement]


def _plain(value) -> str:
    return getattr(value, "value", value)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class RolePermissionCache:
    """Immutable snapshot of role -> permission keys plus key -> (category, action).

    Build it with load() from a synced RoleStore. Never construct it from the
    catalog constants directly -- that would reintroduce a second,
    hand-maintained copy of the grants.
    """

    def __init__(self, grants: Mapping[str, Iterable[str]], catalog: Mapping[str, tuple[str, str]]) -> None:
        self._grants: dict[str, frozenset[str]] = {role: frozenset(keys) for role, keys in grants.items()}
        self._catalog: dict[str, tuple[str, str]] = dict(catalog)

    @classmethod
    def load(cls, store: RoleStore) -> RolePermissionCache:
        catalog = {p.key: (p.category, p.action) for p in store.list_permissions()}
        cache = cls(store.get_role_permission_map(), catalog)
        logger.info("Role permission cache loaded (%d roles, %d permissions)", len(cache._grants), len(catalog))
        return cache

    @property
    def roles(self) -> frozenset[str]:
        return frozenset(self._grants)

    def permissions_for(self, roles: Iterable[str]) -> frozenset[str]:
        keys: set[str] = set()
        for role in roles:
            keys |= self._grants.get(role, frozenset())
        return frozenset(keys)

    def roles_have_permission(self, roles: Iterable[str], key: str) -> bool:
        return any(key in self._grants.get(role, ()) for role in roles)

    def roles_have_category_permission(self, roles: Iterable[str], category: str, action: str | None = None) -> bool:
        for key in self.permissions_for(roles):
            perm_category, perm_action = self._catalog.get(key, (None, None))
            if perm_category != category:
                continue
            if action is not None and perm_action != action:
                continue
            return True
        return False


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class AuthorizationEngine:
    """Allow/deny decisions for an authenticated request.

    The only state besides the cache is the per-user revocation time kept by
    revoke_role_snapshots().

    Usage:
        engine = AuthorizationEngine(role_store, RolePermissionCache.load(role_store))
        engine.check_permission(ctx, "USER_DELETE")           # Decision.DENY for staff
        engine.authorize(ctx, SelfOrPermissionRequirement(owner_id=7, key="USER_READ"))
    """

    def __init__(
        self,
        store: RoleStore,
        cache: RolePermissionCache,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock
        # user_id -> time of the last role revocation
        self._revoked_at: dict[int, float] = {}

    @property
    def cache(self) -> RolePermissionCache:
        return self._cache

    def reload_cache(self) -> None:
        """Replace the cache snapshot with the repository's current grants.

        Assignment of the new object is atomic, so concurrent requests see
        either the old snapshot or the new one, never a half-built table.
        """
        self._cache = RolePermissionCache.load(self._store)

    def revoke_role_snapshots(self, user_id: int) -> None:
        """Stop trusting the roles claim of user_id's tokens issued up to now.

        Call after removing a role from the user or deleting the user. Those
        tokens stay valid; their checks simply go to the repository.
        """
        self._revoked_at[user_id] = self._clock()

    def _snapshot_roles(self, ctx: AuthContext) -> tuple[str, ...]:
        revoked_at = self._revoked_at.get(ctx.user_id)
        if revoked_at is not None and ctx.issued_at <= revoked_at:
            return ()
        return ctx.roles

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_role(self, ctx: AuthContext, required_roles: Iterable[str]) -> Decision:
        """ALLOW if the user holds any of required_roles. An empty list is always DENY."""
        required = set(required_roles)
        if not required:
            return self._deny(ctx, "no roles given")
        if required.intersection(self._snapshot_roles(ctx)):
            return Decision.ALLOW
        if self._store.user_has_any_role(ctx.user_id, required):
            return Decision.ALLOW
        return self._deny(ctx, f"roles {sorted(required)}")

    def check_permission(self, ctx: AuthContext, key: str) -> Decision:
        roles = self._snapshot_roles(ctx)
        if roles and self._cache.roles_have_permission(roles, key):
            return Decision.ALLOW
        if self._store.user_has_permission(ctx.user_id, key):
            return Decision.ALLOW
        return self._deny(ctx, f"permission {key}")

    def check_category_permission(self, ctx: AuthContext, category: str, action: str | None = None) -> Decision:
        category = _plain(category)
        action = _plain(action) if action is not None else None
        roles = self._snapshot_roles(ctx)
        if roles and self._cache.roles_have_category_permission(roles, category, action):
            return Decision.ALLOW
        if self._store.user_has_permission_in_category(ctx.user_id, category, action):
            return Decision.ALLOW
        return self._deny(ctx, f"category {category}/{action or '*'}")

    def check_self_or_permission(self, ctx: AuthContext, owner_id: int, key: str) -> Decision:
        """ALLOW a user acting on their own resource; otherwise require key."""
        if ctx.user_id == owner_id:
            return Decision.ALLOW
        return self.check_permission(ctx, key)

    def authorize(self, ctx: AuthContext, requirement: Requirement | None) -> Decision:
        """Dispatch on the requirement type. No requirement means ALLOW."""
        if requirement is None:
            return Decision.ALLOW
        if isinstance(requirement, RoleRequirement):
            return self.check_role(ctx, requirement.roles)
        if isinstance(requirement, PermissionRequirement):
            return self.check_permission(ctx, requirement.key)
        if isinstance(requirement, CategoryRequirement):
            return self.check_category_permission(ctx, requirement.category, requirement.action)
        if isinstance(requirement, SelfOrPermissionRequirement):
            return self.check_self_or_permission(ctx, requirement.owner_id, requirement.key)
        raise TypeError(f"Unsupported requirement: {requirement!r}")

    def _deny(self, ctx: AuthContext, what: str) -> Decision:
        logger.info("Denied user %d: missing %s", ctx.user_id, what)
        return Decision.DENY
