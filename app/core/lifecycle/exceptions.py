"""Lifecycle-specific exceptions for error handling."""
from __future__ import annotations

OPERATION_IN_PROGRESS_MESSAGE = "An operation for service instance {name} is in progress."


class LifecycleError(Exception):
    """Base exception for all lifecycle operations."""
    pass


class ValidationError(LifecycleError, ValueError):
    """Input rejected before anything was persisted.

    Attributes:
        field: Name of the offending field
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class UnknownResourceError(LifecycleError):
    """Resource (or broker) does not exist."""

    def __init__(self, guid: str, resource_type: str = "resource"):
        self.guid = guid
        self.resource_type = resource_type
        super().__init__(f"{resource_type} {guid} not found")


class ConflictError(LifecycleError):
    """An operation is already in progress for the resource.

    Raised by the operation state store; the orchestrator turns it into
    OperationInProgressError for callers.
    """

    def __init__(self, resource_guid: str, resource_name: str):
        self.resource_guid = resource_guid
        self.resource_name = resource_name
        super().__init__(f"operation in progress for {resource_guid}")


class OperationInProgressError(ConflictError):
    """User-facing conflict: the lock scope has an in-progress operation."""

    def __str__(self) -> str:
        return OPERATION_IN_PROGRESS_MESSAGE.format(name=self.resource_name)


class OperationFailedError(LifecycleError):
    """The broker call behind a synchronously executed operation failed.

    Attributes:
        resource_guid: Resource the operation targeted
        detail: Broker-supplied (or generic) failure detail
    """

    def __init__(self, resource_guid: str, detail: str):
        self.resource_guid = resource_guid
        self.detail = detail
        super().__init__(detail)


class AssociationNotEmptyError(LifecycleError):
    """Service instance still has service keys."""

    def __init__(self, instance_name: str, key_count: int):
        self.instance_name = instance_name
        self.key_count = key_count
        super().__init__(
            f"Please delete the service_keys associations for your service instance {instance_name}."
        )


class UnsupportedOperationError(LifecycleError):
    """Operation kind is not available for this resource type."""
    pass
