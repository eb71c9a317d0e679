"""
Hierarchy validation.

Levels are integers where 0 is the highest authority. An actor outranks a
target only when its level is strictly lower; equal levels never suffice, and
a missing level on either side is a denial.
"""

import logging
from typing import Callable, Optional

from quicklink_rbac.core.errors import CycleDetected
from quicklink_rbac.core.models import Principal, Role

logger = logging.getLogger(__name__)

ManagerLookup = Callable[[str], Optional[str]]


class HierarchyValidator:
    """Level comparisons and manager-chain acyclicity checks."""

    @staticmethod
    def can_manage(actor_level: Optional[int], target_level: Optional[int]) -> bool:
        """True when ``actor_level`` outranks ``target_level``."""
        if not _is_level(actor_level) or not _is_level(target_level):
            return False
        return actor_level < target_level

    @staticmethod
    def can_assign_role(actor_level: Optional[int], role_level: Optional[int]) -> bool:
        """True when the actor may hand out a role of ``role_level``."""
        return HierarchyValidator.can_manage(actor_level, role_level)

    @staticmethod
    def can_manage_principal(
        actor: Optional[Principal],
        actor_role: Optional[Role],
        target: Optional[Principal],
        target_role: Optional[Role],
    ) -> bool:
        if actor is None or target is None or actor_role is None or target_role is None:
            return False
        if actor.principal_id == target.principal_id:
            return False
        return HierarchyValidator.can_manage(actor_role.level, target_role.level)

    @staticmethod
    def validate_no_cycle(principal_id: str, proposed_manager_id: Optional[str], manager_of: ManagerLookup) -> None:
        """Walk the manager chain upward from ``proposed_manager_id``.

        Args:
            principal_id: Principal whose manager would change.
            proposed_manager_id: Candidate manager; None makes a root principal.
            manager_of: Returns the current manager id of a principal.

        Raises:
            CycleDetected: if ``principal_id`` appears in the chain, or the
                existing chain already loops.
        """
        seen = set()
        current = proposed_manager_id
        while current is not None:
            if current == principal_id:
                logger.warning(f"Rejected manager {proposed_manager_id} for {principal_id}: cycle")
                raise CycleDetected(
                    f"Making '{proposed_manager_id}' the manager of '{principal_id}' would create a cycle"
                )
            if current in seen:
                raise CycleDetected(f"Manager chain above '{proposed_manager_id}' already contains a cycle")
            seen.add(current)
            current = manager_of(current)


def _is_level(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
