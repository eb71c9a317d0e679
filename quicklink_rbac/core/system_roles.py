"""
Predefined system roles.

The nine roles seeded at bootstrap, their permission matrices, and the
mapping from a role to the access-level category cached on principals.
"""

from typing import Dict, Iterable, List

from quicklink_rbac.core.models import Role, RoleDefinition
from quicklink_rbac.core.types import AccessLevel, MODULE_ACTIONS, ResourceModule, SUPER_ADMIN_LEVEL


def grant(allowed: Dict[str, Iterable[str]]) -> Dict[str, Dict[str, bool]]:
    """Full matrix with only the listed ``{module: [actions]}`` set to True."""
    matrix = {}
    for module, actions in MODULE_ACTIONS.items():
        granted = set(allowed.get(module.value, ()))
        matrix[module.value] = {action.value: action.value in granted for action in actions}
    return matrix


ALL = {module.value: [a.value for a in actions] for module, actions in MODULE_ACTIONS.items()}

SYSTEM_ROLE_DEFINITIONS: List[RoleDefinition] = [
    RoleDefinition(
        role_id="super_admin",
        name="super_admin",
        display_name="Super Admin",
        description="Full system access. Manages all users, roles and system configuration.",
        level=0,
        can_create_sub_roles=True,
        can_manage_users=True,
        permissions=grant(ALL),
        is_system_role=True,
    ),
    RoleDefinition(
        role_id="system_admin",
        name="system_admin",
        display_name="System Administrator",
        description="System configuration, API integrations and platform health.",
        level=10,
        permissions=grant({
            "systemConfig": ["read", "write"],
            "apiManagement": ["read", "write"],
            "pricing": ["read"],
            "merchantManagement": ["read"],
            "analytics": ["read", "export"],
            "systemHealth": ["read", "write"],
            "compliance": ["read"],
            "auditLogs": ["read"],
            "roleManagement": ["read"],
            "templates": ["read", "create", "update"],
            "aiPrompts": ["read", "create", "update"],
        }),
        is_system_role=True,
    ),
    RoleDefinition(
        role_id="ops_admin",
        name="ops_admin",
        display_name="Operations Administrator",
        description="Day-to-day operations: merchants, support tickets and payouts.",
        level=20,
        can_manage_users=True,
        max_sub_users=20,
        permissions=grant({
            "systemConfig": ["read"],
            "pricing": ["read"],
            "merchantManagement": ["read", "write", "suspend"],
            "analytics": ["read", "export"],
            "systemHealth": ["read"],
            "compliance": ["read"],
            "auditLogs": ["read"],
            "userManagement": ["read", "create", "update"],
            "roleManagement": ["read"],
            "templates": ["read"],
            "supportTickets": ["read", "create", "update"],
            "payouts": ["read", "write"],
        }),
        is_system_role=True,
    ),
    RoleDefinition(
        role_id="finance_admin",
        name="finance_admin",
        display_name="Finance Administrator",
        description="Pricing, payouts and financial reporting.",
        level=30,
        can_manage_users=True,
        max_sub_users=10,
        permissions=grant({
            "pricing": ["read", "write"],
            "merchantManagement": ["read"],
            "analytics": ["read", "export"],
            "compliance": ["read", "export"],
            "auditLogs": ["read"],
            "userManagement": ["read", "create", "update"],
            "roleManagement": ["read"],
            "payouts": ["read", "write"],
        }),
        is_system_role=True,
    ),
    RoleDefinition(
        role_id="audit_admin",
        name="audit_admin",
        display_name="Audit Administrator",
        description="Audit logs, compliance reports and analytics.",
        level=40,
        permissions=grant({
            "systemConfig": ["read"],
            "pricing": ["read"],
            "merchantManagement": ["read"],
            "analytics": ["read", "export"],
            "systemHealth": ["read"],
            "compliance": ["read", "write", "export"],
            "auditLogs": ["read", "export"],
            "roleManagement": ["read"],
            "payouts": ["read"],
        }),
        is_system_role=True,
    ),
    RoleDefinition(
        role_id="support_admin",
        name="support_admin",
        display_name="Support Administrator",
        description="Merchant support: tickets and basic merchant information.",
        level=50,
        permissions=grant({
            "pricing": ["read"],
            "merchantManagement": ["read"],
            "analytics": ["read"],
            "userManagement": ["read"],
            "roleManagement": ["read"],
            "templates": ["read"],
            "supportTickets": ["read", "create", "update"],
        }),
        is_system_role=True,
    ),
    RoleDefinition(
        role_id="merchant_support_lead",
        name="merchant_support_lead",
        display_name="Merchant Support Lead",
        description="Lead support agent managing support agents and escalated tickets.",
        level=60,
        can_manage_users=True,
        max_sub_users=30,
        permissions=grant({
            "pricing": ["read"],
            "merchantManagement": ["read"],
            "analytics": ["read"],
            "userManagement": ["read", "create", "update"],
            "roleManagement": ["read"],
            "supportTickets": ["read", "create", "update", "delete"],
        }),
        is_system_role=True,
    ),
    RoleDefinition(
        role_id="merchant_support_agent",
        name="merchant_support_agent",
        display_name="Merchant Support Agent",
        description="Views merchant information and handles basic support tickets.",
        level=70,
        permissions=grant({
            "pricing": ["read"],
            "merchantManagement": ["read"],
            "supportTickets": ["read", "create", "update"],
        }),
        is_system_role=True,
    ),
    RoleDefinition(
        role_id="viewer",
        name="viewer",
        display_name="Read-Only Viewer",
        description="Read-only access to basic analytics and merchant information.",
        level=90,
        permissions=grant({
            "pricing": ["read"],
            "merchantManagement": ["read"],
            "analytics": ["read"],
        }),
        is_system_role=True,
    ),
]

SYSTEM_ROLE_IDS = frozenset(d.role_id for d in SYSTEM_ROLE_DEFINITIONS)

# (level, category) ordered from most to least privileged.
_CATEGORY_LEVELS = sorted((d.level, AccessLevel(d.name)) for d in SYSTEM_ROLE_DEFINITIONS)


def access_level_for(role: Role) -> AccessLevel:
    """Category cached on a principal holding ``role``.

    System roles map to their own name. Custom roles take the category of the
    least privileged system role at or above them in authority; only the
    level-0 role is ever ``super_admin``.
    """
    if role.is_system_role:
        try:
            return AccessLevel(role.name)
        except ValueError:
            pass
    if role.level == SUPER_ADMIN_LEVEL:
        return AccessLevel.SUPER_ADMIN

    category = AccessLevel.SYSTEM_ADMIN
    for level, candidate in _CATEGORY_LEVELS:
        if level == SUPER_ADMIN_LEVEL:
            continue
        if level <= role.level:
            category = candidate
    return category
