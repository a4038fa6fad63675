"""Event recording for requested lifecycle mutations.

Events record intent: they are emitted once a mutation has been accepted,
whatever the eventual outcome of its job.
"""
from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from typing import Any, Dict

from app.core.lifecycle.models import OperationType
from scripts import audit


@dataclass(frozen=True)
class LifecycleEvent:
    actor: str
    resource_guid: str
    resource_name: str
    resource_type: str
    kind: OperationType
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        return f"audit.{self.resource_type}.{self.kind.value}"


class EventRecorder:
    """Receives lifecycle events; delivery is up to the implementation."""

    def record(self, event: LifecycleEvent) -> None:
        raise NotImplementedError


class AuditEventRecorder(EventRecorder):
    """Writes events to the signed JSONL audit trail.

    Audit failures are reported on stderr and never break the request.
    """

    def record(self, event: LifecycleEvent) -> None:
        audit.safe_log_service_event(
            event.event_type,
            event.resource_guid,
            resource_name=event.resource_name,
            actor=event.actor,
            timestamp=event.timestamp,
            details=event.details,
        )
