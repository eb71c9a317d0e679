"""Typed errors raised by the role store and subordinate manager."""

from typing import Optional


class RBACError(Exception):
    """Base exception for the RBAC engine.

    Every error carries a stable ``kind`` tag, a message safe to show to the
    caller and a remediation hint. Messages never include permission matrices.
    """

    kind = "rbac_error"
    hint = "Contact a platform administrator."
    retryable = False

    def __init__(self, message: str = "An RBAC error occurred", hint: Optional[str] = None):
        self.message = message
        if hint is not None:
            self.hint = hint
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, "hint": self.hint}


class NotFound(RBACError):
    """Referenced role or principal does not exist."""
    kind = "not_found"
    hint = "Check the identifier and try again."


class DuplicateId(RBACError):
    """Creation collides with an existing identifier."""
    kind = "duplicate_id"
    hint = "Choose a different identifier."


class SystemRoleImmutable(RBACError):
    """Mutation or deletion attempted on a protected system role."""
    kind = "system_role_immutable"
    hint = "System roles are fixed at bootstrap; create a custom role instead."


class RoleInUse(RBACError):
    """Deletion blocked because principals are still assigned to the role."""
    kind = "role_in_use"
    hint = "Reassign the principals holding this role before deleting it."


class HierarchyViolation(RBACError):
    """Actor tried to manage or assign a level it does not outrank."""
    kind = "hierarchy_violation"
    hint = "Ask a higher-level admin to perform this action."


class QuotaExceeded(RBACError):
    """Subordinate creation limit reached."""
    kind = "quota_exceeded"
    hint = "Ask your manager to raise your subordinate limit."


class CapabilityDenied(RBACError):
    """Actor lacks the capability flag required for the operation."""
    kind = "capability_denied"
    hint = "Ask a higher-level admin to grant you this capability."


class CycleDetected(RBACError):
    """Proposed manager or parent relationship would create a cycle."""
    kind = "cycle_detected"
    hint = "Pick a manager outside this principal's report chain."


class InvalidRoleDefinition(RBACError):
    """Malformed role definition or patch."""
    kind = "invalid_role_definition"
    hint = "Correct the role definition and resubmit."


class InvalidLevel(InvalidRoleDefinition):
    """Role level outside the permitted range."""
    kind = "invalid_level"
    hint = "Custom role levels must be between 1 and 100."


class IncompletePermissionMatrix(InvalidRoleDefinition):
    """Role permission matrix is partial or names unknown modules/actions."""
    kind = "incomplete_permission_matrix"
    hint = "Declare every resource module in the role's permissions."


class InvalidPrincipalDraft(RBACError):
    """Malformed principal draft."""
    kind = "invalid_principal"
    hint = "Correct the principal details and resubmit."


class StoreTimeout(RBACError):
    """Store operation did not acquire its transaction in time; nothing was applied."""
    kind = "store_timeout"
    hint = "Retry the operation."
    retryable = True


class StoreUnavailable(RBACError):
    """Backing store could not be reached."""
    kind = "store_unavailable"
    hint = "Retry the operation with backoff."
    retryable = True
