"""Tests for the RBAC permission matrix and check_permission function."""

import pytest

from tokenhub.auth.rbac import (
    Action,
    PERMISSION_MATRIX,
    Resource,
    check_permission,
    get_permissions_for_role,
    has_role_at_least,
)
from tokenhub.models.enums import UserRole


class TestPermissionMatrix:
    """Verify the static permission matrix is correctly built."""

    def test_all_roles_present(self):
        assert set(PERMISSION_MATRIX.keys()) == {
            UserRole.VIEWER,
            UserRole.ANALYST,
            UserRole.MANAGER,
            UserRole.ADMIN,
        }

    def test_role_hierarchy_sizes(self):
        """Higher roles have strictly more permissions than lower ones."""
        sizes = [
            len(PERMISSION_MATRIX[role])
            for role in (UserRole.VIEWER, UserRole.ANALYST, UserRole.MANAGER, UserRole.ADMIN)
        ]
        assert sizes == sorted(sizes)
        assert len(set(sizes)) == 4

    @pytest.mark.parametrize(
        "lower,higher",
        [
            (UserRole.VIEWER, UserRole.ANALYST),
            (UserRole.ANALYST, UserRole.MANAGER),
            (UserRole.MANAGER, UserRole.ADMIN),
        ],
    )
    def test_lower_role_is_subset(self, lower, higher):
        assert PERMISSION_MATRIX[lower].issubset(PERMISSION_MATRIX[higher])


class TestCheckPermission:
    def test_viewer_can_view_everything(self):
        for resource in (Resource.REDEMPTION, Resource.DISTRIBUTION, Resource.APPROVAL):
            assert check_permission(UserRole.VIEWER, Action.VIEW, resource)

    def test_viewer_cannot_create_redemption(self):
        assert not check_permission(UserRole.VIEWER, Action.CREATE, Resource.REDEMPTION)

    def test_analyst_creates_but_cannot_cancel(self):
        assert check_permission(UserRole.ANALYST, Action.CREATE, Resource.REDEMPTION)
        assert not check_permission(UserRole.ANALYST, Action.CANCEL, Resource.REDEMPTION)

    @pytest.mark.parametrize(
        "action",
        [Action.CREATE, Action.APPROVE, Action.DELEGATE, Action.ESCALATE],
    )
    def test_manager_drives_approvals(self, action):
        assert check_permission(UserRole.MANAGER, action, Resource.APPROVAL)
        assert not check_permission(UserRole.ANALYST, action, Resource.APPROVAL)

    def test_only_admin_manages_approval_config(self):
        assert check_permission(UserRole.ADMIN, Action.MANAGE_SETTINGS, Resource.APPROVAL)
        assert not check_permission(UserRole.MANAGER, Action.MANAGE_SETTINGS, Resource.APPROVAL)

    def test_only_admin_reads_audit_log(self):
        assert check_permission(UserRole.ADMIN, Action.VIEW, Resource.AUDIT_LOG)
        assert not check_permission(UserRole.MANAGER, Action.VIEW, Resource.AUDIT_LOG)

    def test_unknown_resource_denied(self):
        assert not check_permission(UserRole.ADMIN, Action.VIEW, "spaceship")


class TestRoleHierarchy:
    def test_same_role_is_at_least(self):
        assert has_role_at_least(UserRole.MANAGER, UserRole.MANAGER)

    def test_admin_outranks_manager(self):
        assert has_role_at_least(UserRole.ADMIN, UserRole.MANAGER)

    def test_analyst_below_manager(self):
        assert not has_role_at_least(UserRole.ANALYST, UserRole.MANAGER)


class TestGetPermissionsForRole:
    def test_grouped_by_resource(self):
        perms = get_permissions_for_role(UserRole.VIEWER)
        assert perms == {
            "approval": ["view"],
            "distribution": ["view"],
            "redemption": ["view"],
        }

    def test_manager_redemption_actions(self):
        perms = get_permissions_for_role(UserRole.MANAGER)
        assert set(perms["redemption"]) == {"view", "create", "edit", "cancel"}
        assert "audit_log" not in perms
        assert "manage_settings" not in perms["approval"]
