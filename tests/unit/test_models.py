"""Unit tests for the RBAC vocabulary and record models."""

import pytest

from quicklink_rbac.core.errors import IncompletePermissionMatrix, InvalidLevel
from quicklink_rbac.core.models import (
    Role,
    RoleFilter,
    deny_all_matrix,
    normalize_permissions,
    validate_level,
)
from quicklink_rbac.core.system_roles import ALL, grant
from quicklink_rbac.core.types import (
    Action,
    MODULE_ACTIONS,
    ResourceModule,
    parse_action,
    parse_module,
)


class TestVocabulary:
    """Test cases for the closed module and action sets."""

    def test_every_module_declares_actions(self):
        assert set(MODULE_ACTIONS) == set(ResourceModule)
        assert all(MODULE_ACTIONS[m] for m in ResourceModule)

    def test_merchant_management_actions(self):
        actions = MODULE_ACTIONS[ResourceModule.MERCHANT_MANAGEMENT]
        assert {Action.SUSPEND, Action.TERMINATE} <= actions
        assert Action.EXPORT not in actions

    def test_parse_known_and_unknown(self):
        assert parse_module("payouts") is ResourceModule.PAYOUTS
        assert parse_action("assignRoles") is Action.ASSIGN_ROLES
        assert parse_module("billing") is None
        assert parse_action("approve") is None
        assert parse_module(None) is None


class TestNormalizePermissions:
    """Test cases for permission matrix validation."""

    def test_full_matrix_accepted(self):
        matrix = normalize_permissions(grant({"pricing": ["read"]}))
        assert set(matrix) == set(ResourceModule)
        assert matrix[ResourceModule.PRICING][Action.READ] is True
        assert matrix[ResourceModule.PRICING][Action.WRITE] is False

    def test_missing_module_rejected(self):
        raw = grant({})
        del raw["payouts"]
        with pytest.raises(IncompletePermissionMatrix) as exc:
            normalize_permissions(raw)
        assert "payouts" in exc.value.message

    def test_unknown_module_rejected(self):
        raw = grant({})
        raw["billing"] = {"read": True}
        with pytest.raises(IncompletePermissionMatrix):
            normalize_permissions(raw)

    def test_undeclared_action_rejected(self):
        raw = grant({})
        raw["auditLogs"]["delete"] = True
        with pytest.raises(IncompletePermissionMatrix):
            normalize_permissions(raw)

    def test_omitted_declared_action_defaults_to_false(self):
        raw = grant({})
        raw["analytics"] = {"read": True}
        matrix = normalize_permissions(raw)
        assert matrix[ResourceModule.ANALYTICS] == {
            Action.READ: True, Action.WRITE: False, Action.EXPORT: False,
        }

    def test_non_boolean_grant_rejected(self):
        raw = grant({})
        raw["pricing"]["read"] = "yes"
        with pytest.raises(IncompletePermissionMatrix):
            normalize_permissions(raw)

    def test_non_mapping_rejected(self):
        with pytest.raises(IncompletePermissionMatrix):
            normalize_permissions(["pricing"])


class TestLevels:

    @pytest.mark.parametrize("level", [1, 50, 100])
    def test_custom_levels(self, level):
        assert validate_level(level) == level

    @pytest.mark.parametrize("level", [0, -1, 101, True, "10", None, 10.0])
    def test_invalid_custom_levels(self, level):
        with pytest.raises(InvalidLevel):
            validate_level(level)

    def test_level_zero_reserved_for_system_bootstrap(self):
        assert validate_level(0, allow_super_admin=True) == 0


class TestRole:

    def test_custom_role_flag_is_negation(self):
        role = Role("r", "r", "R", "", 50)
        assert role.is_custom_role is True
        role.is_system_role = True
        assert role.is_custom_role is False

    def test_default_matrix_denies_everything(self):
        matrix = deny_all_matrix()
        assert not any(v for grants in matrix.values() for v in grants.values())

    def test_to_document_uses_string_keys(self):
        role = Role("r", "r", "R", "", 50, permissions=normalize_permissions(grant(ALL)))
        doc = role.to_document()
        assert doc["roleId"] == "r"
        assert doc["permissions"]["userManagement"]["assignRoles"] is True
        assert doc["isCustomRole"] is True

    def test_role_filter(self):
        role = Role("r", "r", "R", "", 50)
        assert RoleFilter(min_level=10, max_level=50).matches(role)
        assert not RoleFilter(max_level=40).matches(role)
        assert not RoleFilter(is_system_role=True).matches(role)
        assert RoleFilter(is_active=True).matches(role)
