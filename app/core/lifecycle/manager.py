"""Lifecycle orchestrator: single entry point for resource mutations.

``request_mutation`` takes the lock on the resource's scope, hands the broker
work to a job runner and records an event. Conflicts are reported
synchronously and are never queued.

Usage:
    manager = LifecycleManager(store, repository, BrokerClient(), runner, AuditEventRecorder())

    handle = manager.create_service_instance("db", broker.guid, "svc", "small")
    handle.wait()
"""
from __future__ import annotations
import logging
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.broker import BrokerClient
from app.core.feature_flags import AccessPolicy, FeatureFlags
from app.core.lifecycle.actions import ActionOutcome, build_action
from app.core.lifecycle.events import EventRecorder, LifecycleEvent
from app.core.lifecycle.exceptions import (
    AssociationNotEmptyError,
    ConflictError,
    OperationFailedError,
    OperationInProgressError,
    UnsupportedOperationError,
    ValidationError,
)
from app.core.lifecycle.jobs import ActionJob, InlineJobRunner, JobRunner
from app.core.lifecycle.models import OperationState, OperationType, ServiceResource
from app.core.lifecycle.operations import Operation, OperationStateStore, ScopeLock
from app.core.lifecycle.resources import ResourceRepository
from app.core.validators import validate_name, validate_printable

logger = logging.getLogger(__name__)

INSTANCE_CREATION_FLAG = "service_instance_creation"


@dataclass
class OperationHandle:
    """Accepted mutation; ``future`` resolves to the job's ActionOutcome."""

    resource_guid: str
    kind: OperationType
    job_id: str
    operation: Operation
    future: "Future[ActionOutcome]"

    @property
    def done(self) -> bool:
        return self.future.done()

    def wait(self, timeout: Optional[float] = None) -> ActionOutcome:
        return self.future.result(timeout=timeout)


class LifecycleManager:
    """Coordinates state store, broker actions, job runners and events."""

    def __init__(
        self,
        store: OperationStateStore,
        repository: ResourceRepository,
        client: BrokerClient,
        runner: JobRunner,
        recorder: EventRecorder,
        flags: Optional[FeatureFlags] = None,
        inline_runner: Optional[JobRunner] = None,
    ):
        self.store = store
        self.repository = repository
        self.client = client
        self.runner = runner
        self.recorder = recorder
        self.flags = flags
        # Deletes always run synchronously
        self.inline_runner = inline_runner or (runner if not runner.is_async else InlineJobRunner(store))

    def request_mutation(
        self,
        resource_guid: str,
        kind: OperationType,
        description: str = "",
        *,
        actor: str = "system",
        policy: AccessPolicy = AccessPolicy(),
        changes: Optional[Dict[str, Any]] = None,
    ) -> OperationHandle:
        """Start a create, update or delete of a resource.

        Args:
            resource_guid: Service instance or service key
            kind: Operation to run
            description: Printable text stored on the operation
            actor: Who asked, for the event trail
            policy: Caller privileges for feature flag checks
            changes: Update only; columns applied after broker success

        Returns:
            Handle on the submitted job

        Raises:
            UnknownResourceError: Resource or its broker does not exist
            ValidationError: Description is not printable
            UnsupportedOperationError: Operation not available for the resource type
            FeatureDisabledError: Instance creation turned off for the caller
            AssociationNotEmptyError: Instance to delete still has service keys
            OperationInProgressError: Lock scope has an operation in progress
            OperationFailedError: Synchronously executed job failed
        """
        resource = self.repository.get(resource_guid)
        self._check_allowed(kind, resource, policy)
        return self._mutate(resource, kind, description, actor=actor, changes=changes)

    # ─────────────────────────────────────────────────────────────────────────
    # Service instances
    # ─────────────────────────────────────────────────────────────────────────

    def create_service_instance(
        self,
        name: str,
        broker_guid: str,
        service_id: str,
        plan_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        *,
        description: str = "",
        actor: str = "system",
        policy: AccessPolicy = AccessPolicy(),
    ) -> OperationHandle:
        """Insert a service instance and provision it with its broker."""
        if self.flags is not None:
            self.flags.raise_unless_enabled(INSTANCE_CREATION_FLAG, policy)
        description = validate_printable(description, "description")
        _require(service_id, "service_id")
        _require(plan_id, "plan_id")

        instance = self.repository.add_instance(name, broker_guid, service_id, plan_id, parameters)
        logger.info(f"Service instance {instance.name} ({instance.guid}) recorded, provisioning")
        return self._mutate(instance, OperationType.CREATE, description, actor=actor)

    def update_service_instance(
        self,
        guid: str,
        *,
        name: Optional[str] = None,
        plan_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        description: str = "",
        actor: str = "system",
    ) -> OperationHandle:
        """Ask the broker to update an instance; local columns change on success."""
        instance = self.repository.get(guid)
        if instance.is_key:
            raise UnsupportedOperationError("Service keys cannot be updated")

        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = validate_name(name)
        if plan_id is not None:
            changes["plan_id"] = _require(plan_id, "plan_id")
        if parameters is not None:
            changes["parameters"] = parameters
        return self._mutate(instance, OperationType.UPDATE, description, actor=actor, changes=changes)

    def delete_service_instance(self, guid: str, *, description: str = "", actor: str = "system") -> OperationHandle:
        """Deprovision an instance that has no service keys left."""
        instance = self.repository.get(guid)
        if instance.is_key:
            raise UnsupportedOperationError(f"{guid} is a service key")
        self._check_allowed(OperationType.DELETE, instance, AccessPolicy())
        return self._mutate(instance, OperationType.DELETE, description, actor=actor)

    # ─────────────────────────────────────────────────────────────────────────
    # Service keys
    # ─────────────────────────────────────────────────────────────────────────

    def create_service_key(
        self,
        name: str,
        instance_guid: str,
        parameters: Optional[Dict[str, Any]] = None,
        *,
        description: str = "",
        actor: str = "system",
    ) -> OperationHandle:
        """Insert a service key under an instance and bind it."""
        description = validate_printable(description, "description")
        key = self.repository.add_key(name, instance_guid, parameters)
        try:
            return self._mutate(key, OperationType.CREATE, description, actor=actor)
        except OperationInProgressError:
            # Never bound, drop the record again
            self.repository.delete(key.guid)
            raise

    def delete_service_key(self, guid: str, *, description: str = "", actor: str = "system") -> OperationHandle:
        key = self.repository.get(guid)
        if not key.is_key:
            raise UnsupportedOperationError(f"{guid} is not a service key")
        return self._mutate(key, OperationType.DELETE, description, actor=actor)

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    def get_resource_with_operation(self, guid: str) -> dict:
        """Resource attributes plus its ``last_operation`` (or None)."""
        resource = self.repository.get(guid)
        operation = self.store.current_operation(guid)
        data = resource.to_dict()
        data["last_operation"] = operation.to_dict() if operation else None
        return data

    def shutdown(self, wait: bool = True) -> None:
        self.runner.shutdown(wait=wait)
        if self.inline_runner is not self.runner:
            self.inline_runner.shutdown(wait=wait)

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _check_allowed(self, kind: OperationType, resource: ServiceResource, policy: AccessPolicy) -> None:
        if kind is OperationType.UPDATE and resource.is_key:
            raise UnsupportedOperationError("Service keys cannot be updated")
        if self.flags is not None and kind is OperationType.CREATE and not resource.is_key:
            self.flags.raise_unless_enabled(INSTANCE_CREATION_FLAG, policy)
        if kind is OperationType.DELETE and not resource.is_key:
            self._ensure_no_keys(resource)

    def _ensure_no_keys(self, instance: ServiceResource) -> None:
        key_count = self.repository.count_keys(instance.guid)
        if key_count:
            raise AssociationNotEmptyError(instance.name, key_count)

    def _mutate(
        self,
        resource: ServiceResource,
        kind: OperationType,
        description: str,
        *,
        actor: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> OperationHandle:
        broker = self.repository.get_broker(resource.broker_guid)
        # Pure construction, nothing is persisted yet
        action = build_action(kind, resource, broker, self.client, self.repository, changes)

        scope_lock = self._lock(resource, kind, description)
        try:
            operation = self._begin(resource, kind, description)
        except Exception:
            if scope_lock is not None:
                scope_lock.release()
            raise

        job = ActionJob(action, resource.guid, scope_lock=scope_lock)
        runner = self.inline_runner if kind is OperationType.DELETE else self.runner
        try:
            future = runner.submit(job)
        except RuntimeError as exc:
            # Executor already shut down
            logger.error(f"[{job.job_id}] could not submit {kind.value} of {resource.guid}: {exc}")
            self.store.complete_operation(resource.guid, OperationState.FAILED, "Operation could not be scheduled")
            if scope_lock is not None:
                scope_lock.release()
            raise

        self.recorder.record(
            LifecycleEvent(
                actor=actor,
                resource_guid=resource.guid,
                resource_name=resource.name,
                resource_type=resource.resource_type,
                kind=kind,
                details={"description": operation.description, "job_id": job.job_id},
            )
        )

        handle = OperationHandle(resource.guid, kind, job.job_id, operation, future)
        if not runner.is_async:
            outcome = future.result()
            if not outcome.done:
                raise OperationFailedError(resource.guid, outcome.detail)
        return handle

    def _lock(self, resource: ServiceResource, kind: OperationType, description: str) -> Optional[ScopeLock]:
        if not resource.is_key:
            return None
        try:
            return self.store.lock_scope(resource.lock_scope_guid, kind, description)
        except ConflictError as exc:
            logger.info(f"Rejected {kind.value} of {resource.guid}: {exc.resource_name} has an operation in progress")
            raise OperationInProgressError(exc.resource_guid, exc.resource_name) from exc

    def _begin(self, resource: ServiceResource, kind: OperationType, description: str) -> Operation:
        deprovision = kind is OperationType.DELETE and not resource.is_key
        try:
            if not deprovision:
                return self.store.begin_operation(resource.guid, kind, description)
            guard = self.store.lock_scope(resource.guid, kind, description)
        except ConflictError as exc:
            logger.info(f"Rejected {kind.value} of {resource.guid}: operation in progress")
            raise OperationInProgressError(exc.resource_guid, exc.resource_name) from exc

        # No key can be bound while the instance holds this operation; recount
        # for keys bound after the first check
        try:
            self._ensure_no_keys(resource)
        except AssociationNotEmptyError:
            guard.release()
            raise
        return guard.operation


def _require(value: Optional[str], field: str) -> str:
    if not value or not str(value).strip():
        raise ValidationError(field, f"{field} is required")
    return str(value).strip()
