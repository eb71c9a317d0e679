"""
Permission evaluation.

:class:`PermissionEvaluator` answers ``can(ctx, resource, action)`` from an
in-memory :class:`AuthContext` snapshot. It is a pure function of the
snapshot, never raises, and resolves every missing or ambiguous input to a
denial. It is the fast client-side gate; authoritative decisions come from the
enforcement adapter.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from quicklink_rbac.core.models import AuthContext
from quicklink_rbac.core.store import ChangeEvent
from quicklink_rbac.core.types import (
    AccessLevel,
    Action,
    MODULE_ACTIONS,
    ResourceModule,
    SUPER_ADMIN_LEVEL,
    parse_action,
    parse_module,
)

logger = logging.getLogger(__name__)


class PermissionEvaluator:
    """Client-side permission gate over an AuthContext snapshot."""

    def can(self, ctx: Optional[AuthContext], resource, action) -> bool:
        """Decide whether the actor may perform ``action`` on ``resource``.

        Principal status is checked before the super-admin bypass, so a
        suspended or inactive super admin is denied everything.

        Args:
            ctx: Actor snapshot; None denies.
            resource: Resource module name or :class:`ResourceModule`.
            action: Action name or :class:`Action`.

        Returns:
            True only for an active principal that is a super admin or whose
            role explicitly grants the pair.
        """
        try:
            return self._decide(ctx, resource, action)
        except Exception as e:
            logger.error(f"Permission evaluation failed, denying: {e}")
            return False

    def _decide(self, ctx: Optional[AuthContext], resource, action) -> bool:
        if ctx is None or ctx.principal is None or ctx.role is None:
            return False
        principal, role = ctx.principal, ctx.role
        if principal.role_id != role.role_id or not role.is_active:
            return False
        if not principal.is_active:
            return False
        if self.is_super_admin(ctx):
            return True

        module = parse_module(resource)
        verb = parse_action(action)
        if module is None or verb is None:
            return False
        grants = role.permissions.get(module)
        if not grants:
            return False
        return grants.get(verb, False) is True

    @staticmethod
    def is_super_admin(ctx: Optional[AuthContext]) -> bool:
        if ctx is None or ctx.principal is None or ctx.role is None:
            return False
        return ctx.principal.access_level == AccessLevel.SUPER_ADMIN or ctx.role.level == SUPER_ADMIN_LEVEL

    def can_manage_users(self, ctx: Optional[AuthContext]) -> bool:
        if ctx is None or ctx.principal is None or not ctx.principal.is_active:
            return False
        if self.can(ctx, ResourceModule.USER_MANAGEMENT, Action.CREATE):
            return True
        return ctx.role is not None and ctx.role.is_active and ctx.role.can_manage_users

    def can_manage_roles(self, ctx: Optional[AuthContext]) -> bool:
        return self.can(ctx, ResourceModule.ROLE_MANAGEMENT, Action.READ)

    def has_access_level(self, ctx: Optional[AuthContext], max_level: int) -> bool:
        """True when the actor's role level is at or above ``max_level`` in authority."""
        if ctx is None or ctx.role is None or ctx.principal is None or not ctx.principal.is_active:
            return False
        return ctx.role.level <= max_level

    def effective_permissions(self, ctx: Optional[AuthContext]) -> Dict[str, List[str]]:
        """Granted actions per module for the actor's own profile view."""
        result: Dict[str, List[str]] = {}
        for module in ResourceModule:
            allowed = [a.value for a in MODULE_ACTIONS[module] if self.can(ctx, module, a)]
            if allowed:
                result[module.value] = sorted(allowed)
        return result


class PermissionSnapshotCache:
    """Session-scoped cache of AuthContext snapshots.

    Non-authoritative: entries expire after ``ttl_seconds`` and are dropped as
    soon as the store reports a change to the principal or its role. The
    enforcement adapter never reads from it.
    """

    def __init__(
        self,
        loader: Callable[[str], Optional[AuthContext]],
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[AuthContext, float]] = {}

    def get(self, principal_id: str) -> Optional[AuthContext]:
        entry = self._entries.get(principal_id)
        now = self._clock()
        if entry is not None and now - entry[1] < self._ttl:
            return entry[0]

        ctx = self._loader(principal_id)
        if ctx is None:
            self._entries.pop(principal_id, None)
            return None
        self._entries[principal_id] = (ctx, now)
        return ctx

    def invalidate(self, principal_id: Optional[str] = None) -> None:
        if principal_id is None:
            self._entries.clear()
        else:
            self._entries.pop(principal_id, None)

    def on_change(self, event: ChangeEvent) -> None:
        if event.kind == "principal":
            self.invalidate(event.record_id)
        elif event.kind == "role":
            stale = [pid for pid, (ctx, _) in self._entries.items() if ctx.role.role_id == event.record_id]
            for pid in stale:
                self._entries.pop(pid, None)

    def __len__(self) -> int:
        return len(self._entries)
