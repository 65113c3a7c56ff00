"""
auth/role_store.py -- SQLAlchemy Core repository for roles, permissions and their assignments.

Pattern: Repository + Data Mapper (same as auth/store.py).

Invariants enforced here:
  - Role names and permission keys are unique. Duplicates raise ConflictError;
    nothing is ever silently overwritten.
  - (user_id, role_id) and (role_id, permission_id) pairs are composite
    primary keys. assign_* methods are idempotent: a second call returns the
    existing pair, and a concurrent duplicate insert that loses the race on
    the PK is treated the same way.
  - remove_* methods are idempotent: removing a pair that does not exist is a
    no-op that returns False, never an error.
  - get_user_permissions() is the set union over all of the user's roles,
    deduplicated by permission id.

Errors:
  IntegrityError is translated only where its meaning is known (unique name
  or key, duplicate pair). Every other SQLAlchemyError propagates -- a broken
  database must surface as a 500, not as "user has no permissions".

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from sqlalchemy import and_, exists, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.database import now_iso, permissions, role_permissions, roles, user_roles, users
from auth.models import Permission, Role, RolePermission, UserRole
from auth.permissions import PERMISSIONS, ROLE_DEFINITIONS, ROLE_PERMISSIONS, PermissionDef
from core.exceptions import ConflictError, NotFoundError

logger = logging.getLogger("keystone.auth.roles")


class RoleStore:
    """Repository for Role, Permission, UserRole and RolePermission.

    Usage:
        store = RoleStore(engine)
        store.sync_catalog()
        admin = store.get_role_by_name("admin")
        store.assign_role_to_user(user_id, admin.id)
        store.user_has_permission(user_id, "USER_DELETE")   # True
    """

    _ROLE_FIELDS: frozenset = frozenset({"name", "description"})
    _PERMISSION_FIELDS: frozenset = frozenset({"key", "category", "action", "description"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, name: str, description: str | None = None) -> Role:
        """Insert a role. Raises ConflictError if the name is taken."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(roles.insert().values(name=name, description=description, created_at=now_iso()))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError(f"Role '{name}' already exists.") from exc
        return self.get_role(result.inserted_primary_key[0])

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(roles.select().order_by(roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: int, **fields) -> Role | None:
        """Update name and/or description. Returns the updated role, or None if not found."""
        unknown = set(fields) - self._ROLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown role fields: {unknown!r}")
        if fields:
            try:
                with self.engine.connect() as conn:
                    conn.execute(roles.update().where(roles.c.id == role_id).values(**fields))
                    conn.commit()
            except IntegrityError as exc:
                raise ConflictError(f"Role '{fields.get('name')}' already exists.") from exc
        return self.get_role(role_id)

    def delete_role(self, role_id: int) -> bool:
        """Delete a role; its user and permission links cascade. False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(roles.delete().where(roles.c.id == role_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, key: str, category: str, action: str, description: str | None = None) -> Permission:
        """Insert a permission. Raises ConflictError if the key is taken."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    permissions.insert().values(
                        key=key,
                        category=_plain(category),
                        action=_plain(action),
                        description=description,
                        created_at=now_iso(),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError(f"Permission '{key}' already exists.") from exc
        return self.get_permission(result.inserted_primary_key[0])

    def get_permission(self, permission_id: int) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(permissions.select().where(permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_key(self, key: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(permissions.select().where(permissions.c.key == key)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self, category: str | None = None) -> list[Permission]:
        """Return all permissions ordered by key, optionally filtered by category."""
        query = permissions.select().order_by(permissions.c.key)
        if category is not None:
            query = query.where(permissions.c.category == _plain(category))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def update_permission(self, permission_id: int, **fields) -> Permission | None:
        unknown = set(fields) - self._PERMISSION_FIELDS
        if unknown:
            raise ValueError(f"Unknown permission fields: {unknown!r}")
        if fields:
            try:
                with self.engine.connect() as conn:
                    conn.execute(permissions.update().where(permissions.c.id == permission_id).values(**fields))
                    conn.commit()
            except IntegrityError as exc:
                raise ConflictError(f"Permission '{fields.get('key')}' already exists.") from exc
        return self.get_permission(permission_id)

    def delete_permission(self, permission_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(permissions.delete().where(permissions.c.id == permission_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # User <-> role assignments
    # ------------------------------------------------------------------

    def get_user_roles(self, user_id: int) -> list[Role]:
        """Return the roles held by user_id (join user_roles -> roles), ordered by id."""
        query = (
            select(roles)
            .select_from(user_roles.join(roles, user_roles.c.role_id == roles.c.id))
            .where(user_roles.c.user_id == user_id)
            .order_by(roles.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def assign_role_to_user(self, user_id: int, role_id: int) -> UserRole:
        """Grant role_id to user_id. Idempotent -- an existing pair is returned as-is.

        Raises NotFoundError if either the user or the role does not exist.
        """
        pair = UserRole(user_id=user_id, role_id=role_id)
        condition = and_(user_roles.c.user_id == user_id, user_roles.c.role_id == role_id)
        with self.engine.connect() as conn:
            if conn.execute(select(user_roles).where(condition)).fetchone() is not None:
                return pair
            _require_row(conn, users, user_id, "User")
            _require_row(conn, roles, role_id, "Role")
            try:
                conn.execute(user_roles.insert().values(user_id=user_id, role_id=role_id))
                conn.commit()
            except IntegrityError:
                # Lost a race with a concurrent assign of the same pair.
                conn.rollback()
                if conn.execute(select(user_roles).where(condition)).fetchone() is None:
                    raise
                return pair
        logger.info("Assigned role %d to user %d", role_id, user_id)
        return pair

    def remove_role_from_user(self, user_id: int, role_id: int) -> bool:
        """Revoke role_id from user_id. Idempotent -- False means nothing was assigned."""
        with self.engine.connect() as conn:
            result = conn.execute(
                user_roles.delete().where(and_(user_roles.c.user_id == user_id, user_roles.c.role_id == role_id))
            )
            conn.commit()
        if result.rowcount:
            logger.info("Removed role %d from user %d", role_id, user_id)
        return result.rowcount > 0

    def user_has_any_role(self, user_id: int, role_names: Iterable[str]) -> bool:
        """Return True if the user holds at least one of role_names. Empty input is always False."""
        names = list(role_names)
        if not names:
            return False
        query = select(
            exists()
            .where(user_roles.c.role_id == roles.c.id)
            .where(user_roles.c.user_id == user_id)
            .where(roles.c.name.in_(names))
        )
        with self.engine.connect() as conn:
            return bool(conn.execute(query).scalar())

    # ------------------------------------------------------------------
    # Role <-> permission assignments
    # ------------------------------------------------------------------

    def get_role_permissions(self, role_id: int) -> list[Permission]:
        query = (
            select(permissions)
            .select_from(role_permissions.join(permissions, role_permissions.c.permission_id == permissions.c.id))
            .where(role_permissions.c.role_id == role_id)
            .order_by(permissions.c.key)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def get_user_permissions(self, user_id: int) -> list[Permission]:
        """Return the union of permissions across all of the user's roles.

        A permission granted by several roles appears once (DISTINCT over the
        permission row, whose id is unique).
        """
        query = (
            select(permissions)
            .distinct()
            .select_from(
                user_roles.join(role_permissions, user_roles.c.role_id == role_permissions.c.role_id).join(
                    permissions, role_permissions.c.permission_id == permissions.c.id
                )
            )
            .where(user_roles.c.user_id == user_id)
            .order_by(permissions.c.key)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def user_has_permission(self, user_id: int, key: str) -> bool:
        return self._user_permission_exists(user_id, permissions.c.key == key)

    def user_has_permission_in_category(self, user_id: int, category: str, action: str | None = None) -> bool:
        """True if any of the user's permissions is in category (and has action, when given)."""
        condition = permissions.c.category == _plain(category)
        if action is not None:
            condition = and_(condition, permissions.c.action == _plain(action))
        return self._user_permission_exists(user_id, condition)

    def _user_permission_exists(self, user_id: int, condition) -> bool:
        query = select(
            exists()
            .where(user_roles.c.user_id == user_id)
            .where(role_permissions.c.role_id == user_roles.c.role_id)
            .where(permissions.c.id == role_permissions.c.permission_id)
            .where(condition)
        )
        with self.engine.connect() as conn:
            return bool(conn.execute(query).scalar())

    def assign_permission_to_role(self, role_id: int, permission_id: int) -> RolePermission:
        """Grant permission_id to role_id. Idempotent. NotFoundError for unknown ids."""
        pair = RolePermission(role_id=role_id, permission_id=permission_id)
        condition = and_(role_permissions.c.role_id == role_id, role_permissions.c.permission_id == permission_id)
        with self.engine.connect() as conn:
            if conn.execute(select(role_permissions).where(condition)).fetchone() is not None:
                return pair
            _require_row(conn, roles, role_id, "Role")
            _require_row(conn, permissions, permission_id, "Permission")
            try:
                conn.execute(role_permissions.insert().values(role_id=role_id, permission_id=permission_id))
                conn.commit()
            except IntegrityError:
                conn.rollback()
                if conn.execute(select(role_permissions).where(condition)).fetchone() is None:
                    raise
        return pair

    def remove_permission_from_role(self, role_id: int, permission_id: int) -> bool:
        """Revoke a permission from a role. Idempotent -- False means it was not granted."""
        with self.engine.connect() as conn:
            result = conn.execute(
                role_permissions.delete().where(
                    and_(role_permissions.c.role_id == role_id, role_permissions.c.permission_id == permission_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def get_roles_for_permission(self, permission_id: int) -> list[Role]:
        query = (
            select(roles)
            .select_from(role_permissions.join(roles, role_permissions.c.role_id == roles.c.id))
            .where(role_permissions.c.permission_id == permission_id)
            .order_by(roles.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_role_permission_map(self) -> dict[str, frozenset[str]]:
        """Return {role name: frozenset of permission keys} for every role.

        Roles without permissions map to an empty set. This is what
        RolePermissionCache loads at startup.
        """
        query = select(roles.c.name, permissions.c.key).select_from(
            roles.outerjoin(role_permissions, roles.c.id == role_permissions.c.role_id).outerjoin(
                permissions, role_permissions.c.permission_id == permissions.c.id
            )
        )
        grants: dict[str, set[str]] = {}
        with self.engine.connect() as conn:
            for name, key in conn.execute(query):
                keys = grants.setdefault(name, set())
                if key is not None:
                    keys.add(key)
        return {name: frozenset(keys) for name, keys in grants.items()}

    # ------------------------------------------------------------------
    # Catalog sync
    # ------------------------------------------------------------------

    def sync_catalog(
        self,
        permission_defs: Mapping[str, PermissionDef] = PERMISSIONS,
        role_definitions: Mapping[str, str] = ROLE_DEFINITIONS,
        role_grants: Mapping[str, Iterable[str]] = ROLE_PERMISSIONS,
    ) -> dict[str, int]:
        """Write the permission catalog into the database. Idempotent and additive.

        Inserts missing permissions, roles and role-permission links in one
        transaction. Existing rows are left untouched and nothing is deleted,
        so roles and grants created by administrators survive restarts.

        Returns counts of inserted rows: {"permissions", "roles", "grants"}.
        """
        counts = {"permissions": 0, "roles": 0, "grants": 0}
        stamp = now_iso()
        with self.engine.begin() as conn:
            perm_ids = {key: pid for pid, key in conn.execute(select(permissions.c.id, permissions.c.key))}
            for key, definition in permission_defs.items():
                if key in perm_ids:
                    continue
                result = conn.execute(
                    permissions.insert().values(
                        key=key,
                        category=definition.category.value,
                        action=definition.action.value,
                        description=definition.description,
                        created_at=stamp,
                    )
                )
                perm_ids[key] = result.inserted_primary_key[0]
                counts["permissions"] += 1

            role_ids = {name: rid for rid, name in conn.execute(select(roles.c.id, roles.c.name))}
            for name, description in role_definitions.items():
                if name in role_ids:
                    continue
                result = conn.execute(roles.insert().values(name=name, description=description, created_at=stamp))
                role_ids[name] = result.inserted_primary_key[0]
                counts["roles"] += 1

            existing = {
                (row.role_id, row.permission_id)
                for row in conn.execute(select(role_permissions.c.role_id, role_permissions.c.permission_id))
            }
            for name, keys in role_grants.items():
                for key in sorted(keys):
                    pair = (role_ids[name], perm_ids[key])
                    if pair in existing:
                        continue
                    conn.execute(role_permissions.insert().values(role_id=pair[0], permission_id=pair[1]))
                    existing.add(pair)
                    counts["grants"] += 1

        logger.info(
            "Catalog sync: %d permissions, %d roles, %d grants inserted",
            counts["permissions"],
            counts["roles"],
            counts["grants"],
        )
        return counts


# ---------------------------------------------------------------------------
# Helpers and row mappers
# ---------------------------------------------------------------------------


def _plain(value) -> str:
    # PermissionCategory / PermissionAction members bind as their string value.
    return getattr(value, "value", value)


def _require_row(conn: Connection, table, row_id: int, label: str) -> None:
    if conn.execute(select(table.c.id).where(table.c.id == row_id)).fetchone() is None:
        raise NotFoundError(f"{label} {row_id} not found.")


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description, created_at=row.created_at)


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        key=row.key,
        category=row.category,
        action=row.action,
        description=row.description,
        created_at=row.created_at,
    )
