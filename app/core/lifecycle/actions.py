"""Lifecycle actions: one broker call plus the local mutation it unlocks.

The set of actions is closed: Create, Update and Delete. ``build_action``
resolves an operation type to one of them and wires in the broker verb and
the local-effect closure for the resource type. Local effects only run after
the broker confirmed the remote side, so an errored action leaves the
resource exactly as it was and the request can simply be retried.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Optional

from app.core.broker import BrokerClient, BrokerResult, BrokerVerb, ResultStatus
from app.core.lifecycle.exceptions import UnsupportedOperationError
from app.core.lifecycle.models import OperationType, ServiceBroker, ServiceResource
from app.core.lifecycle.resources import ResourceRepository

logger = logging.getLogger(__name__)

LocalEffect = Callable[[BrokerResult], None]


@dataclass(frozen=True)
class ActionOutcome:
    """Result of ``Action.execute``."""

    done: bool
    detail: str = ""
    resource_deleted: bool = False
    description: Optional[str] = None

    @classmethod
    def finished(cls, resource_deleted: bool = False, description: Optional[str] = None) -> "ActionOutcome":
        return cls(done=True, resource_deleted=resource_deleted, description=description)

    @classmethod
    def errored(cls, detail: str) -> "ActionOutcome":
        return cls(done=False, detail=detail)


@dataclass
class LifecycleAction:
    """Broker call against ``resource`` followed by ``local_effect`` on success."""

    kind: ClassVar[OperationType]
    deletes_resource: ClassVar[bool] = False

    resource: ServiceResource
    broker: ServiceBroker
    verb: BrokerVerb
    client: BrokerClient
    local_effect: LocalEffect
    parameters: Optional[Dict[str, Any]] = None
    plan_id: Optional[str] = None

    def execute(self) -> ActionOutcome:
        result = self.client.invoke(
            self.broker,
            self.resource,
            self.verb,
            parameters=self.parameters,
            plan_id=self.plan_id,
        )

        if result.status is ResultStatus.SUCCESS or (
            result.status is ResultStatus.GONE and self.verb.is_removal
        ):
            if result.status is ResultStatus.GONE:
                logger.info(f"Broker reports {self.resource.guid} already gone, treating {self.verb.value} as done")
            self.local_effect(result)
            description = result.body.get("description")
            if not isinstance(description, str):
                description = None
            return ActionOutcome.finished(resource_deleted=self.deletes_resource, description=description)

        if result.status is ResultStatus.GONE:
            return ActionOutcome.errored(f"The service broker reported {self.resource.name} as gone")

        logger.warning(
            f"{self.verb.value} of {self.resource.guid} failed ({result.status.value}): {result.detail}"
        )
        return ActionOutcome.errored(result.detail or f"Service broker {self.verb.value} failed")


@dataclass
class CreateAction(LifecycleAction):
    kind: ClassVar[OperationType] = OperationType.CREATE


@dataclass
class UpdateAction(LifecycleAction):
    kind: ClassVar[OperationType] = OperationType.UPDATE
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeleteAction(LifecycleAction):
    kind: ClassVar[OperationType] = OperationType.DELETE
    deletes_resource: ClassVar[bool] = True


def build_action(
    kind: OperationType,
    resource: ServiceResource,
    broker: ServiceBroker,
    client: BrokerClient,
    repository: ResourceRepository,
    changes: Optional[Dict[str, Any]] = None,
) -> LifecycleAction:
    """Resolve an operation type into its concrete action.

    Args:
        kind: Requested operation
        resource: Target service instance or key
        broker: Broker owning the resource
        client: Broker client used by the action
        repository: Resource persistence for the local effect
        changes: Update only; columns to apply once the broker accepted them

    Raises:
        UnsupportedOperationError: Operation not available for the resource type
    """
    guid = resource.guid

    if kind is OperationType.CREATE:
        if resource.is_key:
            def store_credentials(result: BrokerResult) -> None:
                repository.update(guid, credentials=result.body.get("credentials") or {})

            return CreateAction(resource, broker, BrokerVerb.BIND, client, store_credentials,
                                parameters=resource.parameters)

        def store_dashboard(result: BrokerResult) -> None:
            dashboard_url = result.body.get("dashboard_url")
            if dashboard_url:
                repository.update(guid, dashboard_url=dashboard_url)

        return CreateAction(resource, broker, BrokerVerb.PROVISION, client, store_dashboard,
                            parameters=resource.parameters)

    elif kind is OperationType.UPDATE:
        if resource.is_key:
            raise UnsupportedOperationError("Service keys cannot be updated")
        pending = dict(changes or {})

        def apply_changes(result: BrokerResult) -> None:
            if pending:
                repository.update(guid, **pending)

        return UpdateAction(
            resource, broker, BrokerVerb.UPDATE, client, apply_changes,
            parameters=pending.get("parameters"),
            plan_id=pending.get("plan_id"),
            changes=pending,
        )

    elif kind is OperationType.DELETE:
        verb = BrokerVerb.UNBIND if resource.is_key else BrokerVerb.DEPROVISION

        def remove_record(result: BrokerResult) -> None:
            repository.delete(guid)

        return DeleteAction(resource, broker, verb, client, remove_record)

    raise UnsupportedOperationError(f"Unknown operation type: {kind!r}")
