"""
Role store.

Creation, lookup, update and soft deletion of role definitions on top of the
transactional backing store. System roles are written once by
:meth:`RoleStore.seed_system_roles` and rejected by every other mutation path.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from quicklink_rbac.core.audit import AuditEvent
from quicklink_rbac.core.errors import (
    CycleDetected,
    DuplicateId,
    InvalidRoleDefinition,
    NotFound,
    RoleInUse,
    SystemRoleImmutable,
)
from quicklink_rbac.core.models import (
    Role,
    RoleDefinition,
    RoleFilter,
    normalize_permissions,
    utcnow,
    validate_level,
)
from quicklink_rbac.core.store import InMemoryStore, Transaction
from quicklink_rbac.core.system_roles import SYSTEM_ROLE_DEFINITIONS, access_level_for

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = frozenset({
    "name",
    "display_name",
    "description",
    "level",
    "permissions",
    "parent_role_id",
    "can_create_sub_roles",
    "can_manage_users",
    "max_sub_users",
    "is_active",
})


@dataclass
class SeedResult:
    """Outcome of a bootstrap run."""
    seeded: bool
    message: str
    count: int


class RoleStore:
    """Manages role definitions."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create_role(
        self,
        definition: RoleDefinition,
        actor_id: str = "system",
        timeout: Optional[float] = None,
    ) -> Role:
        """Create a custom role.

        Raises:
            DuplicateId: ``role_id`` already exists.
            InvalidLevel: level outside 1..100.
            IncompletePermissionMatrix: matrix omits a module or names unknown keys.
            NotFound: ``parent_role_id`` does not exist.
            SystemRoleImmutable: definition claims to be a system role.
        """
        if definition.is_system_role:
            raise SystemRoleImmutable("System roles can only be created at bootstrap")

        async with self.store.transaction(timeout) as txn:
            role = self._insert(txn, definition, actor_id)

        logger.info(f"Created role: {role.role_id} (level {role.level}) by {actor_id}")
        return self.get_role(role.role_id)

    def get_role(self, role_id: str) -> Role:
        role = self.store.get_role(role_id)
        if role is None:
            raise NotFound(f"Role '{role_id}' not found")
        return role

    def list_roles(self, role_filter: Optional[RoleFilter] = None) -> List[Role]:
        roles = self.store.list_roles()
        if role_filter is not None:
            roles = [r for r in roles if role_filter.matches(r)]
        return sorted(roles, key=lambda r: (r.level, r.role_id))

    async def update_role(
        self,
        role_id: str,
        patch: Dict[str, Any],
        actor_id: str = "system",
        timeout: Optional[float] = None,
    ) -> Role:
        """Apply ``patch`` to a custom role atomically.

        Principals holding the role get their cached access level re-derived
        in the same transaction when the level changes.
        """
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise InvalidRoleDefinition(f"Fields cannot be patched: {', '.join(sorted(unknown))}")

        async with self.store.transaction(timeout) as txn:
            role = txn.require_role(role_id)
            if role.is_system_role:
                raise SystemRoleImmutable(f"Cannot modify system role '{role_id}'")
            before = role.to_document()

            if patch.get("is_active") is False and role.is_active:
                self._check_unassigned(role)

            for key, value in patch.items():
                if key == "level":
                    value = validate_level(value)
                elif key == "permissions":
                    value = normalize_permissions(value)
                elif key == "parent_role_id":
                    self._check_parent(txn, role_id, value)
                elif key == "max_sub_users":
                    _check_quota(value)
                setattr(role, key, value)

            role.updated_at = utcnow()
            role.updated_by = actor_id
            txn.put_role(role)

            if "level" in patch:
                category = access_level_for(role)
                for principal in txn.principals():
                    if principal.role_id == role_id and principal.access_level != category:
                        principal.access_level = category
                        principal.updated_at = role.updated_at
                        txn.put_principal(principal)

            txn.record(AuditEvent(actor_id, "role.update", f"roles/{role_id}", before, role.to_document()))

        logger.info(f"Updated role: {role_id} by {actor_id}")
        return self.get_role(role_id)

    async def delete_role(self, role_id: str, actor_id: str = "system", timeout: Optional[float] = None) -> None:
        """Soft-delete (deactivate) a custom role with no assigned principals."""
        async with self.store.transaction(timeout) as txn:
            role = txn.require_role(role_id)
            if role.is_system_role:
                raise SystemRoleImmutable(f"Cannot delete system role '{role_id}'")
            self._check_unassigned(role)
            if not role.is_active:
                return

            before = role.to_document()
            role.is_active = False
            role.updated_at = utcnow()
            role.updated_by = actor_id
            txn.put_role(role)
            txn.record(AuditEvent(actor_id, "role.delete", f"roles/{role_id}", before, role.to_document()))

        logger.info(f"Deactivated role: {role_id} by {actor_id}")

    async def seed_system_roles(self, timeout: Optional[float] = None) -> SeedResult:
        """Create the system roles once; later runs report "already seeded"."""
        async with self.store.transaction(timeout) as txn:
            existing = [r for r in txn.roles() if r.is_system_role]
            if existing:
                logger.info(f"System roles already seeded ({len(existing)} found)")
                return SeedResult(seeded=False, message="already seeded", count=len(existing))

            for definition in SYSTEM_ROLE_DEFINITIONS:
                self._insert(txn, definition, "system", allow_system=True)

        logger.info(f"Seeded {len(SYSTEM_ROLE_DEFINITIONS)} system roles")
        return SeedResult(seeded=True, message="seeded", count=len(SYSTEM_ROLE_DEFINITIONS))

    def verify_system_roles(self) -> List[Role]:
        return self.list_roles(RoleFilter(is_system_role=True))

    def role_lineage(self, role_id: str) -> List[Role]:
        """The role followed by its parent chain, nearest first."""
        lineage = [self.get_role(role_id)]
        seen = {role_id}
        parent_id = lineage[0].parent_role_id
        while parent_id is not None and parent_id not in seen:
            parent = self.store.get_role(parent_id)
            if parent is None:
                break
            lineage.append(parent)
            seen.add(parent_id)
            parent_id = parent.parent_role_id
        return lineage

    def _insert(self, txn: Transaction, definition: RoleDefinition, actor_id: str, allow_system: bool = False) -> Role:
        if not definition.role_id or not definition.role_id.strip():
            raise InvalidRoleDefinition("Role id must not be empty")
        if txn.get_role(definition.role_id) is not None:
            raise DuplicateId(f"Role '{definition.role_id}' already exists")

        level = validate_level(definition.level, allow_super_admin=allow_system)
        permissions = normalize_permissions(definition.permissions)
        _check_quota(definition.max_sub_users)
        self._check_parent(txn, definition.role_id, definition.parent_role_id)

        now = utcnow()
        role = Role(
            role_id=definition.role_id,
            name=definition.name,
            display_name=definition.display_name,
            description=definition.description,
            level=level,
            permissions=permissions,
            is_system_role=allow_system and definition.is_system_role,
            parent_role_id=definition.parent_role_id,
            can_create_sub_roles=definition.can_create_sub_roles,
            can_manage_users=definition.can_manage_users,
            max_sub_users=definition.max_sub_users,
            created_at=now,
            created_by=actor_id,
            updated_at=now,
            updated_by=actor_id,
        )
        txn.put_role(role)
        txn.record(AuditEvent(actor_id, "role.create", f"roles/{role.role_id}", None, role.to_document()))
        return role

    @staticmethod
    def _check_unassigned(role: Role) -> None:
        count = role.usage_stats.assigned_users_count
        if count > 0:
            raise RoleInUse(f"Role '{role.role_id}' is assigned to {count} principal(s)")

    @staticmethod
    def _check_parent(txn: Transaction, role_id: str, parent_id: Optional[str]) -> None:
        if parent_id is None:
            return
        seen = set()
        current = parent_id
        while current is not None:
            if current == role_id:
                raise CycleDetected(f"Parent '{parent_id}' would make role '{role_id}' its own ancestor")
            if current in seen:
                raise CycleDetected(f"Parent chain above '{parent_id}' already contains a cycle")
            seen.add(current)
            parent = txn.get_role(current)
            if parent is None:
                raise NotFound(f"Parent role '{current}' not found")
            current = parent.parent_role_id


def _check_quota(value) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidRoleDefinition(f"max_sub_users must be a non-negative integer, got {value!r}")
