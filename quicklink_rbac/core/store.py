"""
Backing store for roles and principals.

All mutations run inside :meth:`InMemoryStore.transaction`. A transaction
stages copies of the records it touches and applies them only when the body
finishes without error and within its deadline, so a failed, cancelled or
timed-out operation leaves no observable effect. Transactions are serialised
by a single lock, which makes updates to any one role linearizable.

Reads outside a transaction return copies of committed state and are the
authoritative source for the enforcement adapter.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List, Optional

from quicklink_rbac.core.audit import AuditEvent, AuditSink, InMemoryAuditSink
from quicklink_rbac.core.errors import NotFound, StoreTimeout
from quicklink_rbac.core.models import Principal, Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """Published after a commit for every record it changed."""
    kind: str  # "role" or "principal"
    record_id: str


ChangeListener = Callable[[ChangeEvent], None]


class Transaction:
    """Staged view over the store for one atomic operation."""

    def __init__(self, store: "InMemoryStore"):
        self._store = store
        self._roles: Dict[str, Role] = {}
        self._principals: Dict[str, Principal] = {}
        self._events: List[AuditEvent] = []

    def get_role(self, role_id: Optional[str]) -> Optional[Role]:
        if role_id is None:
            return None
        if role_id not in self._roles:
            committed = self._store._roles.get(role_id)
            if committed is None:
                return None
            self._roles[role_id] = copy.deepcopy(committed)
        return self._roles[role_id]

    def require_role(self, role_id: Optional[str]) -> Role:
        role = self.get_role(role_id)
        if role is None:
            raise NotFound(f"Role '{role_id}' not found")
        return role

    def put_role(self, role: Role) -> None:
        self._roles[role.role_id] = role

    def get_principal(self, principal_id: Optional[str]) -> Optional[Principal]:
        if principal_id is None:
            return None
        if principal_id not in self._principals:
            committed = self._store._principals.get(principal_id)
            if committed is None:
                return None
            self._principals[principal_id] = copy.deepcopy(committed)
        return self._principals[principal_id]

    def require_principal(self, principal_id: Optional[str]) -> Principal:
        principal = self.get_principal(principal_id)
        if principal is None:
            raise NotFound(f"Principal '{principal_id}' not found")
        return principal

    def put_principal(self, principal: Principal) -> None:
        self._principals[principal.principal_id] = principal

    def roles(self) -> List[Role]:
        ids = set(self._store._roles) | set(self._roles)
        return [self.get_role(role_id) for role_id in ids]

    def principals(self) -> List[Principal]:
        ids = set(self._store._principals) | set(self._principals)
        return [self.get_principal(principal_id) for principal_id in ids]

    def record(self, event: AuditEvent) -> None:
        self._events.append(event)


class InMemoryStore:
    """Process-local store with atomic, serialised transactions."""

    def __init__(self, audit_sink: Optional[AuditSink] = None, default_timeout: float = 5.0):
        self._roles: Dict[str, Role] = {}
        self._principals: Dict[str, Principal] = {}
        self._lock = asyncio.Lock()
        self._listeners: List[ChangeListener] = []
        self.audit_sink = audit_sink or InMemoryAuditSink()
        self.default_timeout = default_timeout

    @asynccontextmanager
    async def transaction(self, timeout: Optional[float] = None) -> AsyncIterator[Transaction]:
        """Run the body atomically.

        Args:
            timeout: Seconds allowed for acquiring the transaction and running
                the body. Defaults to ``default_timeout``.

        Raises:
            StoreTimeout: if the deadline passes; nothing is applied.
        """
        timeout = self.default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        try:
            await asyncio.wait_for(self._lock.acquire(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Store transaction timed out after {timeout}s waiting for lock")
            raise StoreTimeout(f"Store operation timed out after {timeout}s")

        try:
            txn = Transaction(self)
            yield txn
            if loop.time() > deadline:
                logger.warning(f"Store transaction exceeded {timeout}s; discarding staged writes")
                raise StoreTimeout(f"Store operation timed out after {timeout}s")
            changes = self._commit(txn)
        finally:
            self._lock.release()

        self._publish(changes)

    def _commit(self, txn: Transaction) -> List[ChangeEvent]:
        # Log before write: a sink failure propagates and nothing is applied.
        if txn._events:
            self.audit_sink.record_batch(list(txn._events))

        changes = []
        for role_id, role in txn._roles.items():
            if self._roles.get(role_id) != role:
                self._roles[role_id] = role
                changes.append(ChangeEvent("role", role_id))
        for principal_id, principal in txn._principals.items():
            if self._principals.get(principal_id) != principal:
                self._principals[principal_id] = principal
                changes.append(ChangeEvent("principal", principal_id))
        return changes

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _publish(self, changes: List[ChangeEvent]) -> None:
        for change in changes:
            for listener in self._listeners:
                try:
                    listener(change)
                except Exception as e:
                    logger.error(f"Change listener failed for {change.kind} {change.record_id}: {e}")

    # Committed reads

    def get_role(self, role_id: str) -> Optional[Role]:
        role = self._roles.get(role_id)
        return copy.deepcopy(role) if role is not None else None

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        principal = self._principals.get(principal_id)
        return copy.deepcopy(principal) if principal is not None else None

    def list_roles(self) -> List[Role]:
        return [copy.deepcopy(r) for r in self._roles.values()]

    def list_principals(self) -> List[Principal]:
        return [copy.deepcopy(p) for p in self._principals.values()]

    def manager_of(self, principal_id: str) -> Optional[str]:
        principal = self._principals.get(principal_id)
        return principal.manager_id if principal is not None else None
