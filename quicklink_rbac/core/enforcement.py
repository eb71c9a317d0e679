"""
Server-side enforcement adapter.

The authoritative gate in front of every mutation. It re-reads the principal
and its role from the store on each call and evaluates a declarative,
priority-ordered rule table against a request document built from that fresh
state. It shares no code path with :class:`PermissionEvaluator`; the two are
kept in agreement by a conformance suite.

Evaluation follows policy semantics: every matching rule is collected, a DENY
wins over any ALLOW, and no matching rule means denial.
"""

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from quicklink_rbac.core.store import InMemoryStore
from quicklink_rbac.core.types import (
    AccessLevel,
    MUTATING_ACTIONS,
    ResourceModule,
    SUPER_ADMIN_LEVEL,
    parse_action,
    parse_module,
)

logger = logging.getLogger(__name__)

# Document collections and the module that governs them.
COLLECTION_MODULES = {
    "roles": ResourceModule.ROLE_MANAGEMENT,
    "admins": ResourceModule.USER_MANAGEMENT,
}


class RuleEffect(Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass
class AccessRule:
    """One entry of the rule table.

    ``resources`` and ``actions`` are glob patterns matched against the
    canonical resource (``merchantManagement``, ``roles/ops_admin``) and the
    action name. ``conditions`` are matched against the request document.
    """
    id: str
    name: str
    effect: RuleEffect
    resources: List[str]
    actions: List[str]
    conditions: Dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    enabled: bool = True

    def matches_request(self, resource: str, action: str, document: Dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        if not any(fnmatch.fnmatchcase(resource, pattern) for pattern in self.resources):
            return False
        if not any(fnmatch.fnmatchcase(action, pattern) for pattern in self.actions):
            return False
        return self._evaluate_conditions(self.conditions, document)

    def _evaluate_conditions(self, conditions: Dict[str, Any], document: Dict[str, Any]) -> bool:
        for key, expected in conditions.items():
            if key not in document:
                return False
            actual = document[key]

            if not isinstance(expected, dict):
                if actual != expected:
                    return False
                continue

            for op, operand in expected.items():
                if op == "$in":
                    if actual not in operand:
                        return False
                elif op == "$not":
                    if actual == operand:
                        return False
                elif op == "$regex":
                    if actual is None or not re.match(operand, str(actual)):
                        return False
                elif op == "$member_of":
                    if actual is None or actual not in document.get(operand, ()):
                        return False
                elif op == "$eq_context":
                    if actual is None or actual != document.get(operand):
                        return False
                else:
                    logger.warning(f"Unknown condition operator {op} in rule {self.id}")
                    return False
        return True


@dataclass
class AccessDecision:
    """Outcome of :meth:`EnforcementAdapter.authorize`."""
    granted: bool
    reason: str
    rule: Optional[str] = None


_WRITE_ACTIONS = sorted(a.value for a in MUTATING_ACTIONS)

DEFAULT_RULES: List[AccessRule] = [
    AccessRule(
        id="deny_unknown_principal",
        name="Deny unknown principal",
        effect=RuleEffect.DENY,
        resources=["*"],
        actions=["*"],
        conditions={"principal_found": False},
        priority=1000,
    ),
    AccessRule(
        id="deny_inactive_principal",
        name="Deny inactive principal",
        effect=RuleEffect.DENY,
        resources=["*"],
        actions=["*"],
        conditions={"principal_status": {"$not": "active"}},
        priority=1000,
    ),
    AccessRule(
        id="deny_inactive_role",
        name="Deny principal whose role is missing or inactive",
        effect=RuleEffect.DENY,
        resources=["*"],
        actions=["*"],
        conditions={"role_active": {"$not": True}},
        priority=1000,
    ),
    AccessRule(
        id="deny_system_role_write",
        name="System roles are immutable",
        effect=RuleEffect.DENY,
        resources=["roles/*"],
        actions=_WRITE_ACTIONS,
        conditions={"target_is_system_role": True},
        priority=900,
    ),
    AccessRule(
        id="allow_super_admin",
        name="Super admin full access",
        effect=RuleEffect.ALLOW,
        resources=["*"],
        actions=["*"],
        conditions={"is_super_admin": True},
        priority=500,
    ),
    AccessRule(
        id="allow_role_grant",
        name="Role permission matrix grant",
        effect=RuleEffect.ALLOW,
        resources=["*"],
        actions=["*"],
        conditions={"permission": {"$member_of": "grants"}},
        priority=100,
    ),
    AccessRule(
        id="allow_self_document",
        name="Principal may read and update its own document",
        effect=RuleEffect.ALLOW,
        resources=["admins/*"],
        actions=["read", "update"],
        conditions={"target_id": {"$eq_context": "principal_id"}},
        priority=50,
    ),
    AccessRule(
        id="allow_direct_report_document",
        name="Manager may read and update direct reports",
        effect=RuleEffect.ALLOW,
        resources=["admins/*"],
        actions=["read", "update"],
        conditions={"target_manager_id": {"$eq_context": "principal_id"}},
        priority=50,
    ),
]


class EnforcementAdapter:
    """Authoritative access decisions over freshly read store state."""

    def __init__(self, store: InMemoryStore, rules: Optional[List[AccessRule]] = None):
        self.store = store
        self._rules: Dict[str, AccessRule] = {}
        for rule in rules if rules is not None else DEFAULT_RULES:
            self.add_rule(rule)

    def add_rule(self, rule: AccessRule) -> AccessRule:
        if rule.id in self._rules:
            raise ValueError(f"Rule '{rule.id}' already exists")
        self._rules[rule.id] = rule
        return rule

    def list_rules(self) -> List[AccessRule]:
        return sorted(self._rules.values(), key=lambda r: r.priority, reverse=True)

    def authorize(self, principal_id: str, resource: str, action: str, target_id: Optional[str] = None) -> AccessDecision:
        """Decide ``action`` on ``resource`` for ``principal_id``.

        Any role claim the caller holds is ignored; the decision is made from
        the store alone. Errors while building the request document deny.
        """
        try:
            canonical, document = self._build_document(principal_id, resource, action, target_id)
            decision = self._evaluate(canonical, _action_name(action), document)
        except Exception as e:
            logger.error(f"Enforcement failed for {principal_id} on {resource}.{action}, denying: {e}")
            decision = AccessDecision(False, "Evaluation error - default deny")

        logger.debug(f"authorize {principal_id} {resource}.{action}: {decision.granted} ({decision.rule})")
        return decision

    def _evaluate(self, resource: str, action: str, document: Dict[str, Any]) -> AccessDecision:
        matched = [r for r in self.list_rules() if r.matches_request(resource, action, document)]

        for rule in matched:
            if rule.effect == RuleEffect.DENY:
                return AccessDecision(False, f"Access denied by rule: {rule.name}", rule.id)
        for rule in matched:
            if rule.effect == RuleEffect.ALLOW:
                return AccessDecision(True, f"Access granted by rule: {rule.name}", rule.id)
        return AccessDecision(False, "No applicable rule - default deny")

    def _build_document(
        self,
        principal_id: str,
        resource: str,
        action: str,
        target_id: Optional[str],
    ) -> Tuple[str, Dict[str, Any]]:
        canonical, module, target_id = _resolve_resource(resource, target_id)
        verb = parse_action(action)

        document: Dict[str, Any] = {
            "principal_id": principal_id,
            "principal_found": False,
            "target_id": target_id,
            "permission": f"{module.value}:{verb.value}" if module and verb else None,
        }

        principal = self.store.get_principal(principal_id)
        if principal is None:
            return canonical, document
        role = self.store.get_role(principal.role_id)

        document.update({
            "principal_found": True,
            "principal_status": principal.status.value,
            "role_active": role is not None and role.is_active,
            "is_super_admin": role is not None and (
                role.level == SUPER_ADMIN_LEVEL or principal.access_level == AccessLevel.SUPER_ADMIN
            ),
            "grants": _granted(role) if role is not None else [],
        })

        if target_id is not None and module == ResourceModule.ROLE_MANAGEMENT:
            target_role = self.store.get_role(target_id)
            document["target_is_system_role"] = target_role is not None and target_role.is_system_role
        elif target_id is not None and module == ResourceModule.USER_MANAGEMENT:
            target = self.store.get_principal(target_id)
            document["target_manager_id"] = target.manager_id if target is not None else None

        return canonical, document


def _resolve_resource(resource, target_id: Optional[str]) -> Tuple[str, Optional[ResourceModule], Optional[str]]:
    """Map a module name or document path onto ``(canonical, module, target)``."""
    resource = resource.value if isinstance(resource, ResourceModule) else str(resource)
    if "/" in resource:
        collection, _, doc_id = resource.partition("/")
        module = COLLECTION_MODULES.get(collection)
        return resource, module, doc_id or None

    module = parse_module(resource)
    if target_id is not None:
        for collection, governed in COLLECTION_MODULES.items():
            if governed == module:
                return f"{collection}/{target_id}", module, target_id
    return resource, module, target_id


def _action_name(action) -> str:
    verb = parse_action(action)
    return verb.value if verb is not None else str(action)


def _granted(role) -> List[str]:
    return [
        f"{module.value}:{action.value}"
        for module, grants in role.permissions.items()
        for action, allowed in grants.items()
        if allowed is True
    ]
