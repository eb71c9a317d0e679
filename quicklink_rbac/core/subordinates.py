"""
Subordinate management.

Tracks manager -> subordinate relationships and the per-manager creation
quota. Every mutation re-reads the actor inside a store transaction, so two
managers racing on the same counter cannot both pass the quota check, and a
failed check leaves no partial state behind.
"""

import copy
import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

from quicklink_rbac.core.audit import AuditEvent
from quicklink_rbac.core.errors import (
    CapabilityDenied,
    DuplicateId,
    HierarchyViolation,
    InvalidPrincipalDraft,
    NotFound,
    QuotaExceeded,
)
from quicklink_rbac.core.evaluator import PermissionEvaluator
from quicklink_rbac.core.hierarchy import HierarchyValidator
from quicklink_rbac.core.models import AuthContext, Principal, PrincipalDraft, Role, utcnow
from quicklink_rbac.core.store import InMemoryStore, Transaction
from quicklink_rbac.core.system_roles import access_level_for
from quicklink_rbac.core.types import Action, PrincipalStatus, ResourceModule, SUPER_ADMIN_LEVEL

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class ReconciliationReport:
    """Recorded subordinate counter versus the actual direct reports."""
    principal_id: str
    recorded: int
    actual: int

    @property
    def consistent(self) -> bool:
        return self.recorded == self.actual


class SubordinateManager:
    """Creates principals under managers and maintains the report tree."""

    def __init__(
        self,
        store: InMemoryStore,
        evaluator: Optional[PermissionEvaluator] = None,
        hierarchy: Optional[HierarchyValidator] = None,
        transitive_visibility: bool = False,
        root_max_sub_users: int = 1000,
    ):
        self.store = store
        self.evaluator = evaluator or PermissionEvaluator()
        self.hierarchy = hierarchy or HierarchyValidator()
        self.transitive_visibility = transitive_visibility
        self.root_max_sub_users = root_max_sub_users

    async def bootstrap_root(self, draft: PrincipalDraft, timeout: Optional[float] = None) -> Principal:
        """Create the first super admin; refused once any principal exists."""
        async with self.store.transaction(timeout) as txn:
            if txn.principals():
                raise CapabilityDenied("A root principal has already been bootstrapped")
            role = txn.require_role(draft.role_id)
            if role.level != SUPER_ADMIN_LEVEL:
                raise HierarchyViolation("The root principal must hold the super admin role")

            max_sub_users = _quota(draft.max_sub_users, self.root_max_sub_users)
            principal = self._new_principal(draft, role, None, SYSTEM_ACTOR, True, max_sub_users)
            txn.put_principal(principal)
            _count_assignment(txn, role, +1)
            txn.record(AuditEvent(
                SYSTEM_ACTOR, "principal.bootstrap", f"admins/{principal.principal_id}", None,
                principal.to_document(),
            ))

        logger.info(f"Bootstrapped root principal {principal.principal_id}")
        return copy.deepcopy(principal)

    async def create_subordinate(
        self,
        actor_id: str,
        draft: PrincipalDraft,
        timeout: Optional[float] = None,
    ) -> Principal:
        """Create ``draft`` as a direct report of ``actor_id``.

        The new principal and the actor's incremented counter are committed
        together or not at all.

        Raises:
            NotFound: actor or requested role missing.
            HierarchyViolation: requested role is not strictly below the actor's.
            QuotaExceeded: actor already created ``max_sub_users`` principals.
            CapabilityDenied: actor inactive, flag off, or role lacks user management.
            DuplicateId: ``principal_id`` taken.
        """
        async with self.store.transaction(timeout) as txn:
            actor = txn.require_principal(actor_id)
            actor_role = txn.require_role(actor.role_id)
            new_role = txn.require_role(draft.role_id)
            if not new_role.is_active:
                raise NotFound(f"Role '{draft.role_id}' has been deactivated")
            if not actor.is_active:
                raise CapabilityDenied(f"Principal '{actor_id}' is {actor.status.value}")

            if not self.hierarchy.can_assign_role(actor_role.level, new_role.level):
                raise HierarchyViolation(
                    f"Level {actor_role.level} cannot create a principal with role level {new_role.level}"
                )
            if actor.created_sub_users_count >= actor.max_sub_users:
                raise QuotaExceeded(
                    f"Principal '{actor_id}' reached the limit of {actor.max_sub_users} subordinate users"
                )
            ctx = AuthContext(principal=actor, role=actor_role)
            if not (actor.can_create_sub_users and self.evaluator.can_manage_users(ctx)):
                raise CapabilityDenied(f"Principal '{actor_id}' may not create subordinate users")
            if not draft.principal_id or txn.get_principal(draft.principal_id) is not None:
                raise DuplicateId(f"Principal '{draft.principal_id}' already exists")

            max_sub_users = _quota(draft.max_sub_users, new_role.max_sub_users or 0)
            principal = self._new_principal(
                draft, new_role, actor_id, actor_id, draft.can_create_sub_users, max_sub_users
            )
            actor.created_sub_users_count += 1
            actor.updated_at = principal.created_at
            txn.put_principal(actor)
            txn.put_principal(principal)
            _count_assignment(txn, new_role, +1)
            txn.record(AuditEvent(
                actor_id, "principal.create", f"admins/{principal.principal_id}", None,
                principal.to_document(),
            ))

        logger.info(f"Principal {actor_id} created subordinate {principal.principal_id} ({new_role.role_id})")
        return copy.deepcopy(principal)

    def list_managed(self, actor_id: str, transitive: Optional[bool] = None) -> List[Principal]:
        """Principals reporting to ``actor_id``, directly or through the tree."""
        if self.store.get_principal(actor_id) is None:
            raise NotFound(f"Principal '{actor_id}' not found")
        if transitive is None:
            transitive = self.transitive_visibility

        children: Dict[str, List[Principal]] = {}
        for principal in self.store.list_principals():
            if principal.manager_id is not None:
                children.setdefault(principal.manager_id, []).append(principal)

        if not transitive:
            return sorted(children.get(actor_id, []), key=lambda p: p.principal_id)

        result, seen = [], {actor_id}
        queue = deque([actor_id])
        while queue:
            for child in sorted(children.get(queue.popleft(), []), key=lambda p: p.principal_id):
                if child.principal_id in seen:
                    continue
                seen.add(child.principal_id)
                result.append(child)
                queue.append(child.principal_id)
        return result

    async def reassign_manager(
        self,
        principal_id: str,
        new_manager_id: str,
        actor_id: str = SYSTEM_ACTOR,
        timeout: Optional[float] = None,
    ) -> Principal:
        """Move ``principal_id`` under ``new_manager_id``.

        Raises:
            CycleDetected: the principal is an ancestor of the new manager.
            HierarchyViolation: the new manager (or the actor) does not outrank it.
            QuotaExceeded: the new manager has no free subordinate slot.
        """
        async with self.store.transaction(timeout) as txn:
            principal = txn.require_principal(principal_id)
            new_manager = txn.require_principal(new_manager_id)
            if principal.manager_id == new_manager_id:
                return copy.deepcopy(principal)

            self.hierarchy.validate_no_cycle(principal_id, new_manager_id, _manager_lookup(txn))

            role = txn.require_role(principal.role_id)
            new_manager_role = txn.require_role(new_manager.role_id)
            if not self.hierarchy.can_manage(new_manager_role.level, role.level):
                raise HierarchyViolation(
                    f"Manager level {new_manager_role.level} does not outrank role level {role.level}"
                )
            self._check_actor(txn, actor_id, principal, role)
            if not new_manager.is_active:
                raise CapabilityDenied(f"Principal '{new_manager_id}' is {new_manager.status.value}")
            if new_manager.created_sub_users_count >= new_manager.max_sub_users:
                raise QuotaExceeded(f"Principal '{new_manager_id}' has no free subordinate slot")

            before = principal.to_document()
            now = utcnow()
            old_manager = txn.get_principal(principal.manager_id)
            if old_manager is not None:
                old_manager.created_sub_users_count = max(0, old_manager.created_sub_users_count - 1)
                old_manager.updated_at = now
                txn.put_principal(old_manager)
            new_manager.created_sub_users_count += 1
            new_manager.updated_at = now
            txn.put_principal(new_manager)

            principal.manager_id = new_manager_id
            principal.updated_at = now
            principal.updated_by = actor_id
            txn.put_principal(principal)
            txn.record(AuditEvent(
                actor_id, "principal.reassign_manager", f"admins/{principal_id}", before, principal.to_document()
            ))

        logger.info(f"Reassigned {principal_id} to manager {new_manager_id} by {actor_id}")
        return copy.deepcopy(principal)

    async def assign_role(
        self,
        principal_id: str,
        role_id: str,
        actor_id: str = SYSTEM_ACTOR,
        timeout: Optional[float] = None,
    ) -> Principal:
        """Give ``principal_id`` a new role and re-derive its access level."""
        async with self.store.transaction(timeout) as txn:
            principal = txn.require_principal(principal_id)
            old_role = txn.require_role(principal.role_id)
            new_role = txn.require_role(role_id)
            if not new_role.is_active:
                raise NotFound(f"Role '{role_id}' has been deactivated")

            if actor_id != SYSTEM_ACTOR:
                actor, actor_role = self._require_active_actor(txn, actor_id)
                ctx = AuthContext(principal=actor, role=actor_role)
                if not self.evaluator.can(ctx, ResourceModule.USER_MANAGEMENT, Action.ASSIGN_ROLES):
                    raise CapabilityDenied(f"Principal '{actor_id}' may not assign roles")
                if not self.hierarchy.can_manage_principal(actor, actor_role, principal, old_role):
                    raise HierarchyViolation(f"Principal '{actor_id}' does not outrank '{principal_id}'")
                if not self.hierarchy.can_assign_role(actor_role.level, new_role.level):
                    raise HierarchyViolation(f"Level {actor_role.level} cannot assign role level {new_role.level}")

            manager = txn.get_principal(principal.manager_id)
            if manager is not None:
                manager_role = txn.require_role(manager.role_id)
                if not self.hierarchy.can_manage(manager_role.level, new_role.level):
                    raise HierarchyViolation(
                        f"Role level {new_role.level} is not below manager level {manager_role.level}"
                    )
            if old_role.role_id == new_role.role_id:
                return copy.deepcopy(principal)

            before = principal.to_document()
            principal.role_id = new_role.role_id
            principal.access_level = access_level_for(new_role)
            principal.updated_at = utcnow()
            principal.updated_by = actor_id
            txn.put_principal(principal)
            if principal.is_active:
                _count_assignment(txn, old_role, -1)
                _count_assignment(txn, new_role, +1)
            txn.record(AuditEvent(
                actor_id, "principal.assign_role", f"admins/{principal_id}", before, principal.to_document()
            ))

        logger.info(f"Assigned role {role_id} to {principal_id} by {actor_id}")
        return copy.deepcopy(principal)

    async def set_status(
        self,
        principal_id: str,
        status: PrincipalStatus,
        actor_id: str = SYSTEM_ACTOR,
        reason: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Principal:
        """Change a principal's status. Principals are never hard-deleted."""
        status = PrincipalStatus(status)
        async with self.store.transaction(timeout) as txn:
            principal = txn.require_principal(principal_id)
            role = txn.require_role(principal.role_id)
            if actor_id == principal_id:
                raise CapabilityDenied("Principals cannot change their own status")
            self._check_actor(txn, actor_id, principal, role, action=Action.UPDATE)
            if principal.status == status:
                return copy.deepcopy(principal)
            if status == PrincipalStatus.ACTIVE and not role.is_active:
                raise NotFound(f"Role '{role.role_id}' has been deactivated")

            before = principal.to_document()
            was_active = principal.is_active
            principal.status = status
            principal.status_reason = reason
            principal.updated_at = utcnow()
            principal.updated_by = actor_id
            txn.put_principal(principal)
            if was_active and not principal.is_active:
                _count_assignment(txn, role, -1)
            elif not was_active and principal.is_active:
                _count_assignment(txn, role, +1)
            txn.record(AuditEvent(
                actor_id, f"principal.status.{status.value}", f"admins/{principal_id}", before,
                principal.to_document(),
            ))

        logger.info(f"Set status of {principal_id} to {status.value} by {actor_id}")
        return copy.deepcopy(principal)

    async def deactivate(
        self,
        principal_id: str,
        actor_id: str = SYSTEM_ACTOR,
        reason: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Principal:
        return await self.set_status(principal_id, PrincipalStatus.INACTIVE, actor_id, reason, timeout)

    def can_edit(self, actor_id: str, target_id: str) -> bool:
        """Super admins, the direct manager, and the principal itself may edit a profile."""
        actor = self.store.get_principal(actor_id)
        target = self.store.get_principal(target_id)
        if actor is None or target is None or not actor.is_active:
            return False
        role = self.store.get_role(actor.role_id)
        if role is None:
            return False
        if self.evaluator.is_super_admin(AuthContext(principal=actor, role=role)):
            return True
        return target.manager_id == actor_id or target_id == actor_id

    def reconcile(self, principal_id: str) -> ReconciliationReport:
        """Compare the stored counter with the actual number of direct reports."""
        principal = self.store.get_principal(principal_id)
        if principal is None:
            raise NotFound(f"Principal '{principal_id}' not found")
        actual = len(self.list_managed(principal_id, transitive=False))
        report = ReconciliationReport(principal_id, principal.created_sub_users_count, actual)
        if not report.consistent:
            logger.warning(
                f"Subordinate count drift for {principal_id}: recorded {report.recorded}, actual {report.actual}"
            )
        return report

    # Internals

    def _require_active_actor(self, txn: Transaction, actor_id: str):
        actor = txn.require_principal(actor_id)
        actor_role = txn.require_role(actor.role_id)
        if not actor.is_active:
            raise CapabilityDenied(f"Principal '{actor_id}' is {actor.status.value}")
        return actor, actor_role

    def _check_actor(
        self,
        txn: Transaction,
        actor_id: str,
        target: Principal,
        target_role: Role,
        action: Action = Action.UPDATE,
    ) -> None:
        if actor_id == SYSTEM_ACTOR:
            return
        actor, actor_role = self._require_active_actor(txn, actor_id)
        ctx = AuthContext(principal=actor, role=actor_role)
        is_manager = target.manager_id == actor_id
        if not (is_manager or self.evaluator.can(ctx, ResourceModule.USER_MANAGEMENT, action)):
            raise CapabilityDenied(f"Principal '{actor_id}' may not modify '{target.principal_id}'")
        if not self.hierarchy.can_manage_principal(actor, actor_role, target, target_role):
            raise HierarchyViolation(f"Principal '{actor_id}' does not outrank '{target.principal_id}'")

    @staticmethod
    def _new_principal(
        draft: PrincipalDraft,
        role: Role,
        manager_id: Optional[str],
        created_by: str,
        can_create_sub_users: bool,
        max_sub_users: int,
    ) -> Principal:
        now = utcnow()
        return Principal(
            principal_id=draft.principal_id,
            email=draft.email,
            display_name=draft.display_name,
            role_id=role.role_id,
            access_level=access_level_for(role),
            manager_id=manager_id,
            can_create_sub_users=can_create_sub_users,
            max_sub_users=max_sub_users,
            created_at=now,
            created_by=created_by,
            updated_at=now,
            updated_by=created_by,
        )


def _quota(requested: Optional[int], default: int) -> int:
    value = default if requested is None else requested
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidPrincipalDraft(f"max_sub_users must be a non-negative integer, got {value!r}")
    return value


def _count_assignment(txn: Transaction, role: Role, delta: int) -> None:
    role.usage_stats.assigned_users_count = max(0, role.usage_stats.assigned_users_count + delta)
    if delta > 0:
        role.usage_stats.last_assigned_at = utcnow()
    txn.put_role(role)


def _manager_lookup(txn: Transaction):
    def manager_of(principal_id: str) -> Optional[str]:
        principal = txn.get_principal(principal_id)
        return principal.manager_id if principal is not None else None
    return manager_of
