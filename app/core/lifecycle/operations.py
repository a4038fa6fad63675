"""Operation state store.

Each resource has at most one current operation record. ``begin_operation``
is the only way to move a record into ``in progress`` and is atomic per
resource: the resource row is locked (``SELECT ... FOR UPDATE``, or the
database-wide write lock taken by ``BEGIN IMMEDIATE`` on SQLite) before the
current state is inspected, so two callers can never both observe "no
operation in progress" for the same resource.

State machine::

    none -> in progress -> {succeeded, failed}
    {succeeded, failed} -> in progress   (next begin_operation)

Usage:
    store = OperationStateStore(session_factory)

    op = store.begin_operation(guid, OperationType.DELETE, "deleting")
    ...
    store.complete_operation(guid, OperationState.SUCCEEDED)
"""
from __future__ import annotations
import datetime
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.database import session_scope
from app.core.lifecycle.exceptions import ConflictError, UnknownResourceError
from app.core.lifecycle.models import (
    OperationState,
    OperationType,
    ResourceOperation,
    ServiceResource,
)
from app.core.validators import sanitize_printable, validate_printable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Operation:
    """Immutable snapshot of a resource's current operation."""

    resource_guid: str
    type: OperationType
    state: OperationState
    description: str = ""
    updated_at: Optional[datetime.datetime] = None

    @property
    def in_progress(self) -> bool:
        return self.state is OperationState.IN_PROGRESS

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "state": self.state.value,
            "description": self.description,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_record(cls, record: ResourceOperation) -> "Operation":
        return cls(
            resource_guid=record.resource_guid,
            type=OperationType(record.type),
            state=OperationState(record.state),
            description=record.description or "",
            updated_at=_as_aware(record.updated_at) if record.updated_at else None,
        )


class ScopeLock:
    """In-progress operation held on a lock-scope resource.

    Remembers the operation the scope had before the lock was taken;
    ``release`` puts it back (or clears the record when there was none), so
    the scope's last-known operation is untouched once the lock is gone.
    """

    def __init__(self, store: "OperationStateStore", operation: Operation, previous: Optional[Operation]):
        self._store = store
        self.operation = operation
        self.previous = previous
        self._released = False

    @property
    def resource_guid(self) -> str:
        return self.operation.resource_guid

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._store.restore_operation(self.resource_guid, self.previous)
        logger.debug(f"Released lock on {self.resource_guid}")


class OperationStateStore:
    """Persists the current operation of every resource."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def current_operation(self, resource_guid: str) -> Optional[Operation]:
        """Return the current operation of a resource, or None."""
        with session_scope(self._session_factory) as session:
            record = session.get(ResourceOperation, resource_guid)
            return Operation.from_record(record) if record else None

    def begin_operation(self, resource_guid: str, kind: OperationType, description: str = "") -> Operation:
        """Move a resource's operation to ``in progress``.

        Args:
            resource_guid: Resource to operate on
            kind: Operation type
            description: Printable description stored with the operation

        Returns:
            The new in-progress operation

        Raises:
            ValidationError: Description contains control characters
            UnknownResourceError: Resource does not exist
            ConflictError: An operation is already in progress
        """
        operation, _previous = self._begin(resource_guid, kind, description)
        return operation

    def lock_scope(self, resource_guid: str, kind: OperationType, description: str = "") -> ScopeLock:
        """Begin an operation on a scope resource, remembering what it replaced."""
        operation, previous = self._begin(resource_guid, kind, description)
        return ScopeLock(self, operation, previous)

    def complete_operation(
        self,
        resource_guid: str,
        outcome: OperationState,
        description: Optional[str] = None,
    ) -> Optional[Operation]:
        """Move the current operation to a terminal state.

        No-op when the resource or its operation no longer exists: a resource
        deleted while its job ran must not get a fresh record.

        Args:
            resource_guid: Resource whose operation finished
            outcome: SUCCEEDED or FAILED
            description: New description; ``None`` keeps the current one

        Returns:
            The updated operation, or None if there was nothing to update
        """
        if not outcome.is_terminal:
            raise ValueError(f"complete_operation needs a terminal state, got {outcome.value!r}")

        with session_scope(self._session_factory) as session:
            record = session.get(ResourceOperation, resource_guid)
            if record is None:
                logger.debug(f"No operation to complete for {resource_guid}")
                return None
            record.state = outcome.value
            if description is not None:
                record.description = sanitize_printable(description)
            record.updated_at = _utcnow()
            session.flush()
            operation = Operation.from_record(record)

        logger.info(f"Operation {operation.type.value} on {resource_guid} {operation.state.value}")
        return operation

    def clear_operation(self, resource_guid: str) -> None:
        """Remove a resource's operation record, if any."""
        with session_scope(self._session_factory) as session:
            record = session.get(ResourceOperation, resource_guid)
            if record is not None:
                session.delete(record)

    def restore_operation(self, resource_guid: str, snapshot: Optional[Operation]) -> None:
        """Overwrite a resource's operation with a previously taken snapshot.

        A ``None`` snapshot clears the record. Missing resources are ignored.
        """
        with session_scope(self._session_factory) as session:
            record = session.get(ResourceOperation, resource_guid)
            if snapshot is None:
                if record is not None:
                    session.delete(record)
                return
            if record is None:
                if session.get(ServiceResource, resource_guid) is None:
                    return
                record = ResourceOperation(resource_guid=resource_guid)
                session.add(record)
            record.type = snapshot.type.value
            record.state = snapshot.state.value
            record.description = snapshot.description
            record.updated_at = snapshot.updated_at or _utcnow()

    def stuck_operations(self, older_than: datetime.timedelta) -> List[Operation]:
        """List in-progress operations not touched within ``older_than``.

        Read-only: nothing here resolves a stuck operation.
        """
        cutoff = _utcnow() - older_than
        with session_scope(self._session_factory) as session:
            records = session.scalars(
                select(ResourceOperation).where(ResourceOperation.state == OperationState.IN_PROGRESS.value)
            ).all()
            return [
                Operation.from_record(record)
                for record in records
                if _as_aware(record.updated_at) < cutoff
            ]

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _begin(self, resource_guid: str, kind: OperationType, description: str):
        description = validate_printable(description, "description")
        try:
            with session_scope(self._session_factory) as session:
                resource = self._lock_resource(session, resource_guid)
                record = session.get(ResourceOperation, resource_guid)
                if record is not None and record.state == OperationState.IN_PROGRESS.value:
                    raise ConflictError(resource_guid, resource.name)

                previous = Operation.from_record(record) if record is not None else None
                if record is None:
                    record = ResourceOperation(resource_guid=resource_guid)
                    session.add(record)
                record.type = kind.value
                record.state = OperationState.IN_PROGRESS.value
                record.description = description
                record.updated_at = _utcnow()
                session.flush()
                operation = Operation.from_record(record)
                resource_name = resource.name
        except IntegrityError:
            # Lost an insert race on the primary key
            raise ConflictError(resource_guid, resource_name_or_guid(self._session_factory, resource_guid))

        logger.info(f"Operation {kind.value} on {resource_guid} ({resource_name}) in progress")
        return operation, previous

    @staticmethod
    def _lock_resource(session: Session, resource_guid: str) -> ServiceResource:
        resource = session.scalars(
            select(ServiceResource).where(ServiceResource.guid == resource_guid).with_for_update()
        ).one_or_none()
        if resource is None:
            raise UnknownResourceError(resource_guid)
        return resource


def resource_name_or_guid(session_factory: sessionmaker, resource_guid: str) -> str:
    with session_scope(session_factory) as session:
        resource = session.get(ServiceResource, resource_guid)
        return resource.name if resource else resource_guid


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_aware(value: Optional[datetime.datetime]) -> datetime.datetime:
    # SQLite hands back naive datetimes
    if value is None:
        return datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value
