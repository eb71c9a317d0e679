"""
Audit event sink.

Every mutating role or principal operation produces an immutable
:class:`AuditEvent`. The store hands a transaction's events to the sink as
one batch, before the write is committed, so a sink failure aborts the
mutation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger("quicklink_rbac.audit")


@dataclass(frozen=True)
class AuditEvent:
    """Immutable record of one mutation."""
    actor_id: str
    action: str
    target: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actorId": self.actor_id,
            "action": self.action,
            "target": self.target,
            "before": self.before,
            "after": self.after,
            "timestamp": self.timestamp.isoformat(),
        }


class AuditSink:
    """Receives audit events synchronously; raising aborts the mutation."""

    def record(self, event: AuditEvent) -> None:
        raise NotImplementedError

    def record_batch(self, events: List[AuditEvent]) -> None:
        """Record all events of one transaction.

        The default delivers events one by one, so a failure partway leaves
        the earlier ones recorded. Sinks that can reject a whole batch up
        front override this.
        """
        for event in events:
            self.record(event)


class InMemoryAuditSink(AuditSink):
    """Keeps events in a list. Used by tests and the CLI."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def record_batch(self, events: List[AuditEvent]) -> None:
        self.events.extend(events)

    def for_target(self, target: str) -> List[AuditEvent]:
        return [e for e in self.events if e.target == target]


class LoggingAuditSink(AuditSink):
    """Writes events to the ``quicklink_rbac.audit`` logger."""

    def __init__(self, audit_logger: Optional[logging.Logger] = None):
        self.logger = audit_logger or logger

    def record(self, event: AuditEvent) -> None:
        self.record_batch([event])

    def record_batch(self, events: List[AuditEvent]) -> None:
        rendered = [(e, {"event": "audit", **e.to_dict()}) for e in events]
        for event, extra in rendered:
            self.logger.info("Audit %s on %s by %s", event.action, event.target, event.actor_id, extra=extra)
