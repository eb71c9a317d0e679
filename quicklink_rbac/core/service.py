"""
RBAC service facade.

Wires the store, audit sink, role store, hierarchy validator, evaluator,
subordinate manager, enforcement adapter and snapshot cache for one
application. Each FastAPI app or CLI invocation builds its own instance.
"""

import logging
from typing import Optional

from quicklink_rbac.core.audit import AuditSink, LoggingAuditSink
from quicklink_rbac.core.enforcement import EnforcementAdapter
from quicklink_rbac.core.errors import NotFound
from quicklink_rbac.core.evaluator import PermissionEvaluator, PermissionSnapshotCache
from quicklink_rbac.core.hierarchy import HierarchyValidator
from quicklink_rbac.core.models import AuthContext
from quicklink_rbac.core.roles import RoleStore
from quicklink_rbac.core.store import InMemoryStore
from quicklink_rbac.core.subordinates import SubordinateManager

logger = logging.getLogger(__name__)


class RBACService:
    """All RBAC components for one application instance."""

    def __init__(
        self,
        store: Optional[InMemoryStore] = None,
        audit_sink: Optional[AuditSink] = None,
        operation_timeout: float = 5.0,
        transitive_visibility: bool = False,
        root_max_sub_users: int = 1000,
        cache_ttl_seconds: float = 300.0,
    ):
        self.store = store or InMemoryStore(
            audit_sink=audit_sink or LoggingAuditSink(),
            default_timeout=operation_timeout,
        )
        self.hierarchy = HierarchyValidator()
        self.evaluator = PermissionEvaluator()
        self.roles = RoleStore(self.store)
        self.subordinates = SubordinateManager(
            self.store,
            evaluator=self.evaluator,
            hierarchy=self.hierarchy,
            transitive_visibility=transitive_visibility,
            root_max_sub_users=root_max_sub_users,
        )
        self.enforcement = EnforcementAdapter(self.store)
        self.cache = PermissionSnapshotCache(self.load_context, ttl_seconds=cache_ttl_seconds)
        self.store.subscribe(self.cache.on_change)

    @classmethod
    def from_config(cls, config, audit_sink: Optional[AuditSink] = None) -> "RBACService":
        """Build a service from a loaded :class:`RBACConfig`."""
        return cls(
            audit_sink=audit_sink,
            operation_timeout=config.store.operation_timeout_seconds,
            transitive_visibility=config.hierarchy.transitive_visibility,
            root_max_sub_users=config.hierarchy.root_max_sub_users,
            cache_ttl_seconds=config.cache.ttl_seconds,
        )

    def load_context(self, principal_id: str) -> Optional[AuthContext]:
        """Fresh AuthContext from committed state, or None if unresolvable."""
        principal = self.store.get_principal(principal_id)
        if principal is None:
            return None
        role = self.store.get_role(principal.role_id)
        if role is None:
            logger.warning(f"Principal {principal_id} references missing role {principal.role_id}")
            return None
        return AuthContext(principal=principal, role=role)

    def build_context(self, principal_id: str) -> AuthContext:
        """Cached AuthContext for a session; raises NotFound if unresolvable."""
        ctx = self.cache.get(principal_id)
        if ctx is None:
            raise NotFound(f"Principal '{principal_id}' not found")
        return ctx
