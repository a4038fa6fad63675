"""ORM models: service brokers, service resources and their current operation."""
from __future__ import annotations
import datetime
import enum
import uuid
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def _new_guid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ResourceType(str, enum.Enum):
    SERVICE_INSTANCE = "service_instance"
    SERVICE_KEY = "service_key"


class OperationType(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OperationState(str, enum.Enum):
    IN_PROGRESS = "in progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationState.IN_PROGRESS


class ServiceBroker(Base):
    __tablename__ = "service_brokers"

    guid: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_guid)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    broker_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    auth_username: Mapped[str] = mapped_column(String(255), nullable=False)
    auth_password: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ServiceResource(Base):
    """A service instance or a service key.

    Keys carry ``parent_guid`` (their owning instance) and inherit the
    instance's broker, service and plan.
    """

    __tablename__ = "service_resources"

    guid: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_guid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    broker_guid: Mapped[str] = mapped_column(ForeignKey("service_brokers.guid"), nullable=False, index=True)
    parent_guid: Mapped[Optional[str]] = mapped_column(
        ForeignKey("service_resources.guid", ondelete="RESTRICT"), nullable=True, index=True
    )
    service_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    plan_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    parameters: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    credentials: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    dashboard_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    operation: Mapped[Optional["ResourceOperation"]] = relationship(
        back_populates="resource", cascade="all, delete-orphan", uselist=False
    )

    @property
    def is_key(self) -> bool:
        return self.resource_type == ResourceType.SERVICE_KEY.value

    @property
    def lock_scope_guid(self) -> str:
        """Resource whose operation gates mutations of this one."""
        return self.parent_guid if self.is_key and self.parent_guid else self.guid

    def to_dict(self) -> dict:
        data = {
            "guid": self.guid,
            "name": self.name,
            "type": self.resource_type,
            "broker_guid": self.broker_guid,
            "service_id": self.service_id,
            "plan_id": self.plan_id,
            "parameters": self.parameters or {},
        }
        if self.is_key:
            data["service_instance_guid"] = self.parent_guid
        else:
            data["dashboard_url"] = self.dashboard_url
        return data


class ResourceOperation(Base):
    """Single current operation of a resource (1:1, overwritten per request)."""

    __tablename__ = "resource_operations"

    resource_guid: Mapped[str] = mapped_column(
        ForeignKey("service_resources.guid", ondelete="CASCADE"), primary_key=True
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    resource: Mapped[ServiceResource] = relationship(back_populates="operation")
