"""
tests/test_role_store.py -- Unit tests for RoleStore: roles, permissions,
assignments and catalog sync.

role_store comes from conftest.py with the permission catalog already synced,
so the built-in admin / supervisor / staff roles exist in every test.
"""

from __future__ import annotations

import pytest

from auth.models import User
from auth.permissions import PERMISSIONS, ROLE_DEFINITIONS, ROLE_PERMISSIONS, PermissionAction, PermissionCategory
from auth.role_store import RoleStore
from core.exceptions import ConflictError, NotFoundError


@pytest.fixture
def user_id(user_store) -> int:
    return user_store.create_user(User(name="Ada", email="ada@example.com", password_hash="x"))


def _role_id(role_store: RoleStore, name: str) -> int:
    return role_store.get_role_by_name(name).id


def _perm_id(role_store: RoleStore, key: str) -> int:
    return role_store.get_permission_by_key(key).id


class TestRoles:
    def test_create_and_fetch(self, role_store) -> None:
        role = role_store.create_role("auditor", "Read-only reviewer")
        assert role.id is not None
        assert role_store.get_role(role.id).name == "auditor"
        assert role_store.get_role_by_name("auditor").description == "Read-only reviewer"

    def test_duplicate_name_conflicts(self, role_store) -> None:
        with pytest.raises(ConflictError):
            role_store.create_role("admin")

    def test_update_role(self, role_store) -> None:
        role = role_store.create_role("auditor")
        updated = role_store.update_role(role.id, description="Reviews reports")
        assert updated.description == "Reviews reports"
        assert updated.name == "auditor"

    def test_update_missing_role_is_none(self, role_store) -> None:
        assert role_store.update_role(9999, description="nope") is None

    def test_rename_to_taken_name_conflicts(self, role_store) -> None:
        role = role_store.create_role("auditor")
        with pytest.raises(ConflictError):
            role_store.update_role(role.id, name="staff")

    def test_delete_role(self, role_store) -> None:
        role = role_store.create_role("auditor")
        assert role_store.delete_role(role.id) is True
        assert role_store.get_role(role.id) is None
        assert role_store.delete_role(role.id) is False


class TestPermissions:
    def test_create_permission(self, role_store) -> None:
        perm = role_store.create_permission(
            "AUDIT_READ", PermissionCategory.REPORTING, PermissionAction.READ, "Read audit log"
        )
        assert perm.category == "reporting"
        assert perm.action == "read"
        assert role_store.get_permission_by_key("AUDIT_READ").id == perm.id

    def test_duplicate_key_conflicts(self, role_store) -> None:
        with pytest.raises(ConflictError):
            role_store.create_permission("USER_READ", "user_management", "read")

    def test_list_filtered_by_category(self, role_store) -> None:
        keys = [p.key for p in role_store.list_permissions(PermissionCategory.REPORTING)]
        assert keys == ["REPORT_CREATE", "REPORT_EXPORT", "REPORT_READ"]


class TestUserRoles:
    def test_assign_twice_keeps_one_record(self, role_store, user_id) -> None:
        staff = _role_id(role_store, "staff")
        role_store.assign_role_to_user(user_id, staff)
        role_store.assign_role_to_user(user_id, staff)
        assert [r.name for r in role_store.get_user_roles(user_id)] == ["staff"]

    def test_assign_unknown_role_raises(self, role_store, user_id) -> None:
        with pytest.raises(NotFoundError):
            role_store.assign_role_to_user(user_id, 9999)

    def test_assign_to_unknown_user_raises(self, role_store) -> None:
        with pytest.raises(NotFoundError):
            role_store.assign_role_to_user(9999, _role_id(role_store, "staff"))

    def test_remove_unassigned_role_is_noop(self, role_store) -> None:
        """Removing a role nobody holds (even for an unknown user) is not an error."""
        assert role_store.remove_role_from_user(99, 5) is False

    def test_remove_assigned_role(self, role_store, user_id) -> None:
        staff = _role_id(role_store, "staff")
        role_store.assign_role_to_user(user_id, staff)
        assert role_store.remove_role_from_user(user_id, staff) is True
        assert role_store.get_user_roles(user_id) == []

    def test_user_has_any_role(self, role_store, user_id) -> None:
        role_store.assign_role_to_user(user_id, _role_id(role_store, "supervisor"))
        assert role_store.user_has_any_role(user_id, ["admin", "supervisor"])
        assert not role_store.user_has_any_role(user_id, ["admin"])

    def test_user_has_any_role_with_empty_list_is_false(self, role_store, user_id) -> None:
        role_store.assign_role_to_user(user_id, _role_id(role_store, "admin"))
        assert role_store.user_has_any_role(user_id, []) is False

    def test_deleting_user_drops_assignments(self, role_store, user_store, user_id) -> None:
        admin = _role_id(role_store, "admin")
        role_store.assign_role_to_user(user_id, admin)
        user_store.delete_user(user_id)
        assert role_store.get_user_roles(user_id) == []

    def test_deleting_role_drops_assignments_and_grants(self, role_store, user_id) -> None:
        role = role_store.create_role("auditor")
        role_store.assign_role_to_user(user_id, role.id)
        role_store.assign_permission_to_role(role.id, _perm_id(role_store, "REPORT_READ"))
        role_store.delete_role(role.id)
        assert role_store.get_user_roles(user_id) == []
        assert "auditor" not in role_store.get_role_permission_map()


class TestPermissionResolution:
    def test_staff_permissions(self, role_store, user_id) -> None:
        role_store.assign_role_to_user(user_id, _role_id(role_store, "staff"))
        keys = {p.key for p in role_store.get_user_permissions(user_id)}
        assert keys == set(ROLE_PERMISSIONS["staff"])
        assert role_store.user_has_permission(user_id, "USER_READ")
        assert not role_store.user_has_permission(user_id, "USER_DELETE")

    def test_permission_through_two_roles_appears_once(self, role_store, user_id) -> None:
        role_store.assign_role_to_user(user_id, _role_id(role_store, "staff"))
        role_store.assign_role_to_user(user_id, _role_id(role_store, "supervisor"))
        keys = [p.key for p in role_store.get_user_permissions(user_id)]
        assert keys.count("USER_READ") == 1
        assert len(keys) == len(set(keys))
        assert set(keys) == set(ROLE_PERMISSIONS["staff"]) | set(ROLE_PERMISSIONS["supervisor"])

    def test_user_without_roles_has_nothing(self, role_store, user_id) -> None:
        assert role_store.get_user_permissions(user_id) == []
        assert not role_store.user_has_permission(user_id, "USER_READ")

    def test_category_check(self, role_store, user_id) -> None:
        role_store.assign_role_to_user(user_id, _role_id(role_store, "staff"))
        assert role_store.user_has_permission_in_category(user_id, PermissionCategory.PAYMENT_PROCESSING)
        assert role_store.user_has_permission_in_category(user_id, "payment_processing", "create")
        assert not role_store.user_has_permission_in_category(user_id, "payment_processing", "approve")
        assert not role_store.user_has_permission_in_category(user_id, PermissionCategory.SYSTEM_CONFIG)

    def test_grant_and_revoke_on_role(self, role_store, user_id) -> None:
        staff = _role_id(role_store, "staff")
        delete = _perm_id(role_store, "USER_DELETE")
        role_store.assign_role_to_user(user_id, staff)

        role_store.assign_permission_to_role(staff, delete)
        role_store.assign_permission_to_role(staff, delete)
        assert role_store.user_has_permission(user_id, "USER_DELETE")
        assert [p.key for p in role_store.get_role_permissions(staff)].count("USER_DELETE") == 1

        assert role_store.remove_permission_from_role(staff, delete) is True
        assert role_store.remove_permission_from_role(staff, delete) is False
        assert not role_store.user_has_permission(user_id, "USER_DELETE")

    def test_grant_unknown_permission_raises(self, role_store) -> None:
        with pytest.raises(NotFoundError):
            role_store.assign_permission_to_role(_role_id(role_store, "staff"), 9999)

    def test_roles_for_permission(self, role_store) -> None:
        names = [r.name for r in role_store.get_roles_for_permission(_perm_id(role_store, "PAYMENT_APPROVE"))]
        assert sorted(names) == ["admin", "supervisor"]

    def test_role_permission_map_includes_empty_roles(self, role_store) -> None:
        role_store.create_role("empty")
        grants = role_store.get_role_permission_map()
        assert grants["empty"] == frozenset()
        assert grants["admin"] == frozenset(PERMISSIONS)


class TestCatalogSync:
    def test_first_sync_inserts_everything(self, engine) -> None:
        counts = RoleStore(engine).sync_catalog()
        assert counts == {
            "permissions": len(PERMISSIONS),
            "roles": len(ROLE_DEFINITIONS),
            "grants": sum(len(keys) for keys in ROLE_PERMISSIONS.values()),
        }

    def test_second_sync_is_a_noop(self, role_store) -> None:
        assert role_store.sync_catalog() == {"permissions": 0, "roles": 0, "grants": 0}

    def test_sync_keeps_custom_rows(self, role_store) -> None:
        role = role_store.create_role("auditor")
        role_store.assign_permission_to_role(role.id, _perm_id(role_store, "REPORT_READ"))
        role_store.sync_catalog()
        assert role_store.get_role_permission_map()["auditor"] == frozenset({"REPORT_READ"})

    def test_sync_restores_deleted_grant(self, role_store) -> None:
        staff = _role_id(role_store, "staff")
        role_store.remove_permission_from_role(staff, _perm_id(role_store, "REPORT_READ"))
        assert role_store.sync_catalog()["grants"] == 1
        assert "REPORT_READ" in role_store.get_role_permission_map()["staff"]
