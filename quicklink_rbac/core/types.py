"""
RBAC vocabulary.

Closed, statically enumerated sets of resource modules, actions, access
levels and principal statuses. A role's permission matrix is keyed by these
enums, so an unknown module or action is a validation error rather than a
silently missing key.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional


class ResourceModule(str, Enum):
    """Protected functional areas of the admin dashboard."""
    SYSTEM_CONFIG = "systemConfig"
    API_MANAGEMENT = "apiManagement"
    PRICING = "pricing"
    MERCHANT_MANAGEMENT = "merchantManagement"
    ANALYTICS = "analytics"
    SYSTEM_HEALTH = "systemHealth"
    COMPLIANCE = "compliance"
    AUDIT_LOGS = "auditLogs"
    USER_MANAGEMENT = "userManagement"
    ROLE_MANAGEMENT = "roleManagement"
    TEMPLATES = "templates"
    SUPPORT_TICKETS = "supportTickets"
    AI_PROMPTS = "aiPrompts"
    PAYOUTS = "payouts"


class Action(str, Enum):
    """Actions a permission matrix can grant."""
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    SUSPEND = "suspend"
    TERMINATE = "terminate"
    EXPORT = "export"
    CREATE = "create"
    UPDATE = "update"
    ASSIGN_ROLES = "assignRoles"


class AccessLevel(str, Enum):
    """Denormalised role category cached on every principal."""
    SUPER_ADMIN = "super_admin"
    SYSTEM_ADMIN = "system_admin"
    OPS_ADMIN = "ops_admin"
    FINANCE_ADMIN = "finance_admin"
    AUDIT_ADMIN = "audit_admin"
    SUPPORT_ADMIN = "support_admin"
    MERCHANT_SUPPORT_LEAD = "merchant_support_lead"
    MERCHANT_SUPPORT_AGENT = "merchant_support_agent"
    VIEWER = "viewer"


class PrincipalStatus(str, Enum):
    """Account status; only ACTIVE principals pass permission checks."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    LOCKED = "locked"


_CRUD = frozenset({Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE})
_RWD = frozenset({Action.READ, Action.WRITE, Action.DELETE})

# Actions each module declares. Keys are the complete set of modules a role
# matrix must cover.
MODULE_ACTIONS: Dict[ResourceModule, FrozenSet[Action]] = {
    ResourceModule.SYSTEM_CONFIG: _RWD,
    ResourceModule.API_MANAGEMENT: _RWD,
    ResourceModule.PRICING: _RWD,
    ResourceModule.MERCHANT_MANAGEMENT: _RWD | {Action.SUSPEND, Action.TERMINATE},
    ResourceModule.ANALYTICS: frozenset({Action.READ, Action.WRITE, Action.EXPORT}),
    ResourceModule.SYSTEM_HEALTH: frozenset({Action.READ, Action.WRITE}),
    ResourceModule.COMPLIANCE: frozenset({Action.READ, Action.WRITE, Action.EXPORT}),
    ResourceModule.AUDIT_LOGS: frozenset({Action.READ, Action.EXPORT}),
    ResourceModule.USER_MANAGEMENT: _CRUD | {Action.ASSIGN_ROLES},
    ResourceModule.ROLE_MANAGEMENT: _CRUD,
    ResourceModule.TEMPLATES: _CRUD,
    ResourceModule.SUPPORT_TICKETS: _CRUD,
    ResourceModule.AI_PROMPTS: _CRUD,
    ResourceModule.PAYOUTS: _RWD,
}

# Actions that mutate a document; used by the enforcement rules.
MUTATING_ACTIONS: FrozenSet[Action] = frozenset({
    Action.WRITE,
    Action.DELETE,
    Action.CREATE,
    Action.UPDATE,
    Action.ASSIGN_ROLES,
    Action.SUSPEND,
    Action.TERMINATE,
})

MIN_LEVEL = 0
MAX_LEVEL = 100
SUPER_ADMIN_LEVEL = 0


def parse_module(value) -> Optional[ResourceModule]:
    """Return the module for ``value`` or None when it is not in the closed set."""
    if isinstance(value, ResourceModule):
        return value
    try:
        return ResourceModule(value)
    except (ValueError, TypeError):
        return None


def parse_action(value) -> Optional[Action]:
    """Return the action for ``value`` or None when it is unknown."""
    if isinstance(value, Action):
        return value
    try:
        return Action(value)
    except (ValueError, TypeError):
        return None
