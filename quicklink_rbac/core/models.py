"""
Role and principal records.

Roles carry a closed permission matrix keyed by :class:`ResourceModule` and
:class:`Action`. Principals reference exactly one role and cache its category
in ``access_level``. Records handed out by the store are copies; mutation
always goes through a store transaction.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from quicklink_rbac.core.errors import IncompletePermissionMatrix, InvalidLevel
from quicklink_rbac.core.types import (
    AccessLevel,
    Action,
    MAX_LEVEL,
    MIN_LEVEL,
    MODULE_ACTIONS,
    PrincipalStatus,
    ResourceModule,
    parse_action,
    parse_module,
)

PermissionMatrix = Dict[ResourceModule, Dict[Action, bool]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_permissions(raw: Optional[Mapping[Any, Any]]) -> PermissionMatrix:
    """Validate a raw ``{module: {action: bool}}`` mapping into a full matrix.

    Every module of the closed set must be present. Actions a module declares
    but the mapping omits are stored as False.

    Raises:
        IncompletePermissionMatrix: on missing modules, unknown modules or
            actions, or non-boolean grants.
    """
    if not isinstance(raw, Mapping):
        raise IncompletePermissionMatrix("Role permissions must be a mapping of modules")

    matrix: PermissionMatrix = {}
    for module_key, grants in raw.items():
        module = parse_module(module_key)
        if module is None:
            raise IncompletePermissionMatrix(f"Unknown resource module '{module_key}'")
        if not isinstance(grants, Mapping):
            raise IncompletePermissionMatrix(f"Permissions for '{module.value}' must be a mapping")

        declared = MODULE_ACTIONS[module]
        entry = {action: False for action in declared}
        for action_key, allowed in grants.items():
            action = parse_action(action_key)
            if action is None or action not in declared:
                raise IncompletePermissionMatrix(
                    f"Action '{action_key}' is not declared for module '{module.value}'"
                )
            if not isinstance(allowed, bool):
                raise IncompletePermissionMatrix(
                    f"Grant for '{module.value}.{action.value}' must be a boolean"
                )
            entry[action] = allowed
        matrix[module] = entry

    missing = [m.value for m in ResourceModule if m not in matrix]
    if missing:
        raise IncompletePermissionMatrix(
            f"Role permissions omit required modules: {', '.join(sorted(missing))}"
        )
    return matrix


def deny_all_matrix() -> PermissionMatrix:
    return {module: {action: False for action in actions} for module, actions in MODULE_ACTIONS.items()}


def validate_level(level: Any, allow_super_admin: bool = False) -> int:
    """Return ``level`` if it is an int in range, else raise InvalidLevel."""
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidLevel(f"Role level must be an integer, got {level!r}")
    lowest = MIN_LEVEL if allow_super_admin else MIN_LEVEL + 1
    if level < lowest or level > MAX_LEVEL:
        raise InvalidLevel(f"Role level {level} is outside {lowest}..{MAX_LEVEL}")
    return level


@dataclass
class UsageStats:
    """Assignment counters maintained by the subordinate manager."""
    assigned_users_count: int = 0
    last_assigned_at: Optional[datetime] = None


@dataclass
class Role:
    """Named, leveled bundle of permissions."""
    role_id: str
    name: str
    display_name: str
    description: str
    level: int
    permissions: PermissionMatrix = field(default_factory=deny_all_matrix)
    is_system_role: bool = False
    parent_role_id: Optional[str] = None
    can_create_sub_roles: bool = False
    can_manage_users: bool = False
    max_sub_users: Optional[int] = None
    usage_stats: UsageStats = field(default_factory=UsageStats)
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = "system"
    updated_at: datetime = field(default_factory=utcnow)
    updated_by: str = "system"

    @property
    def is_custom_role(self) -> bool:
        return not self.is_system_role

    def grants(self, module: ResourceModule, action: Action) -> bool:
        return self.permissions.get(module, {}).get(action, False) is True

    def permission_map(self) -> Dict[str, Dict[str, bool]]:
        """Matrix with plain string keys, for serialisation."""
        return {
            module.value: {action.value: allowed for action, allowed in sorted(grants.items(), key=lambda i: i[0].value)}
            for module, grants in self.permissions.items()
        }

    def to_document(self) -> Dict[str, Any]:
        """Document shape used by the enforcement rules and the API."""
        return {
            "roleId": self.role_id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "level": self.level,
            "isSystemRole": self.is_system_role,
            "isCustomRole": self.is_custom_role,
            "parentRoleId": self.parent_role_id,
            "canCreateSubRoles": self.can_create_sub_roles,
            "canManageUsers": self.can_manage_users,
            "maxSubUsers": self.max_sub_users,
            "permissions": self.permission_map(),
            "usageStats": {
                "assignedUsersCount": self.usage_stats.assigned_users_count,
                "lastAssignedAt": self.usage_stats.last_assigned_at.isoformat()
                if self.usage_stats.last_assigned_at else None,
            },
            "isActive": self.is_active,
        }


@dataclass
class RoleDefinition:
    """Input for :meth:`RoleStore.create_role`."""
    role_id: str
    name: str
    display_name: str
    level: int
    permissions: Mapping[Any, Any]
    description: str = ""
    parent_role_id: Optional[str] = None
    can_create_sub_roles: bool = False
    can_manage_users: bool = False
    max_sub_users: Optional[int] = None
    is_system_role: bool = False


@dataclass
class RoleFilter:
    """Optional filters for :meth:`RoleStore.list_roles`."""
    is_system_role: Optional[bool] = None
    is_active: Optional[bool] = None
    min_level: Optional[int] = None
    max_level: Optional[int] = None

    def matches(self, role: Role) -> bool:
        if self.is_system_role is not None and role.is_system_role != self.is_system_role:
            return False
        if self.is_active is not None and role.is_active != self.is_active:
            return False
        if self.min_level is not None and role.level < self.min_level:
            return False
        if self.max_level is not None and role.level > self.max_level:
            return False
        return True


@dataclass
class Principal:
    """An admin user holding exactly one role."""
    principal_id: str
    email: str
    display_name: str
    role_id: str
    access_level: AccessLevel
    manager_id: Optional[str] = None
    can_create_sub_users: bool = False
    max_sub_users: int = 0
    created_sub_users_count: int = 0
    status: PrincipalStatus = PrincipalStatus.ACTIVE
    status_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = "system"
    updated_at: datetime = field(default_factory=utcnow)
    updated_by: str = "system"

    @property
    def is_active(self) -> bool:
        return self.status == PrincipalStatus.ACTIVE

    @property
    def is_root(self) -> bool:
        return self.manager_id is None

    def to_document(self) -> Dict[str, Any]:
        return {
            "principalId": self.principal_id,
            "email": self.email,
            "displayName": self.display_name,
            "roleId": self.role_id,
            "accessLevel": self.access_level.value,
            "managerId": self.manager_id,
            "canCreateSubUsers": self.can_create_sub_users,
            "maxSubUsers": self.max_sub_users,
            "createdSubUsersCount": self.created_sub_users_count,
            "status": self.status.value,
            "statusReason": self.status_reason,
        }


@dataclass
class PrincipalDraft:
    """Input for creating a principal."""
    principal_id: str
    email: str
    display_name: str
    role_id: str
    can_create_sub_users: bool = False
    max_sub_users: Optional[int] = None


@dataclass(frozen=True)
class AuthContext:
    """Per-request snapshot of the acting principal and its role.

    Built from the store when a session starts or a request arrives and
    discarded on logout. It is never shared across principals.
    """
    principal: Principal
    role: Role
    issued_at: datetime = field(default_factory=utcnow)

    @property
    def principal_id(self) -> str:
        return self.principal.principal_id

