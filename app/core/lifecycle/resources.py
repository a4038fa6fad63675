"""Persistence of brokers, service instances and service keys.

Objects returned here are detached from their session (the session factory
uses ``expire_on_commit=False``); column attributes stay readable, but
relationships must not be touched.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from app.core.database import session_scope
from app.core.lifecycle.exceptions import UnknownResourceError, ValidationError
from app.core.lifecycle.models import ResourceType, ServiceBroker, ServiceResource
from app.core.validators import validate_broker_url, validate_name

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "plan_id", "parameters", "credentials", "dashboard_url"})


class ResourceRepository:
    """CRUD over brokers and service resources."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ─────────────────────────────────────────────────────────────────────────
    # Brokers
    # ─────────────────────────────────────────────────────────────────────────

    def register_broker(self, name: str, broker_url: str, auth_username: str, auth_password: str) -> ServiceBroker:
        """Register a broker and the credentials used to call it."""
        name = validate_name(name)
        broker_url = validate_broker_url(broker_url)
        if not auth_username or not auth_password:
            raise ValidationError("auth_username", "broker credentials are required")

        with session_scope(self._session_factory) as session:
            if session.scalars(select(ServiceBroker).where(ServiceBroker.name == name)).first():
                raise ValidationError("name", f"service broker name {name} is taken")
            broker = ServiceBroker(
                name=name,
                broker_url=broker_url,
                auth_username=auth_username,
                auth_password=auth_password,
            )
            session.add(broker)
            session.flush()

        logger.info(f"Registered service broker {name} at {broker_url}")
        return broker

    def get_broker(self, guid: str) -> ServiceBroker:
        with session_scope(self._session_factory) as session:
            broker = session.get(ServiceBroker, guid)
            if broker is None:
                raise UnknownResourceError(guid, "service broker")
            return broker

    def find_broker_by_name(self, name: str) -> Optional[ServiceBroker]:
        with session_scope(self._session_factory) as session:
            return session.scalars(select(ServiceBroker).where(ServiceBroker.name == name)).first()

    # ─────────────────────────────────────────────────────────────────────────
    # Service resources
    # ─────────────────────────────────────────────────────────────────────────

    def find(self, guid: str) -> Optional[ServiceResource]:
        with session_scope(self._session_factory) as session:
            return session.get(ServiceResource, guid)

    def get(self, guid: str) -> ServiceResource:
        resource = self.find(guid)
        if resource is None:
            raise UnknownResourceError(guid)
        return resource

    def add_instance(
        self,
        name: str,
        broker_guid: str,
        service_id: str,
        plan_id: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> ServiceResource:
        """Insert a service instance record (before it is provisioned)."""
        name = validate_name(name)
        with session_scope(self._session_factory) as session:
            if session.get(ServiceBroker, broker_guid) is None:
                raise UnknownResourceError(broker_guid, "service broker")
            instance = ServiceResource(
                name=name,
                resource_type=ResourceType.SERVICE_INSTANCE.value,
                broker_guid=broker_guid,
                service_id=service_id or "",
                plan_id=plan_id or "",
                parameters=parameters or None,
            )
            session.add(instance)
            session.flush()
        return instance

    def add_key(self, name: str, instance_guid: str, parameters: Optional[Dict[str, Any]] = None) -> ServiceResource:
        """Insert a service key record under an instance (before it is bound)."""
        name = validate_name(name)
        with session_scope(self._session_factory) as session:
            instance = session.get(ServiceResource, instance_guid)
            if instance is None or instance.is_key:
                raise UnknownResourceError(instance_guid, "service instance")
            key = ServiceResource(
                name=name,
                resource_type=ResourceType.SERVICE_KEY.value,
                broker_guid=instance.broker_guid,
                parent_guid=instance.guid,
                service_id=instance.service_id,
                plan_id=instance.plan_id,
                parameters=parameters or None,
            )
            session.add(key)
            session.flush()
        return key

    def count_keys(self, instance_guid: str) -> int:
        with session_scope(self._session_factory) as session:
            return session.scalar(
                select(func.count()).select_from(ServiceResource).where(ServiceResource.parent_guid == instance_guid)
            ) or 0

    def keys_of(self, instance_guid: str) -> List[ServiceResource]:
        with session_scope(self._session_factory) as session:
            return list(
                session.scalars(
                    select(ServiceResource)
                    .where(ServiceResource.parent_guid == instance_guid)
                    .order_by(ServiceResource.created_at)
                ).all()
            )

    def update(self, guid: str, **changes: Any) -> Optional[ServiceResource]:
        """Apply column changes; returns None when the resource is gone."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update {', '.join(sorted(unknown))}")
        with session_scope(self._session_factory) as session:
            resource = session.get(ServiceResource, guid)
            if resource is None:
                return None
            for attr, value in changes.items():
                setattr(resource, attr, value)
            session.flush()
            return resource

    def delete(self, guid: str) -> bool:
        """Remove a resource record together with its operation."""
        with session_scope(self._session_factory) as session:
            resource = session.get(ServiceResource, guid)
            if resource is None:
                return False
            session.delete(resource)
        logger.info(f"Deleted {guid} from local records")
        return True
