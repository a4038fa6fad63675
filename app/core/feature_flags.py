"""Persisted feature flags with admin-skippable semantics.

Flags have a compiled-in default; an operator can override a default by
storing a row (optionally with a custom error message). Callers pass an
explicit ``AccessPolicy`` instead of relying on an ambient security context:

    flags = FeatureFlags(session_factory)
    flags.raise_unless_enabled("service_instance_creation", AccessPolicy(admin_override=True))
"""
from __future__ import annotations
import datetime
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping, Optional

from sqlalchemy import Boolean, DateTime, Integer, String, select
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from app.core.database import Base, session_scope
from app.core.lifecycle.exceptions import LifecycleError, ValidationError
from app.core.validators import validate_printable

logger = logging.getLogger(__name__)

DEFAULT_FLAGS: Dict[str, bool] = {
    "service_instance_creation": True,
    "service_instance_sharing": False,
    "space_scoped_private_broker_creation": True,
    "hide_marketplace_from_unauthenticated_users": False,
    "env_var_visibility": True,
    "user_org_creation": False,
}

# Always enabled for admins
ADMIN_SKIPPABLE: FrozenSet[str] = frozenset({
    "service_instance_creation",
    "service_instance_sharing",
    "space_scoped_private_broker_creation",
})

# Always enabled for read-only admins
ADMIN_READ_ONLY_SKIPPABLE: FrozenSet[str] = frozenset({
    "env_var_visibility",
    "hide_marketplace_from_unauthenticated_users",
})


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class UndefinedFeatureFlagError(LifecycleError):
    """Flag name has no compiled-in default."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"invalid feature flag name: {name}")


class FeatureDisabledError(LifecycleError):
    """Feature is turned off for the caller."""

    def __init__(self, name: str, error_message: Optional[str] = None):
        self.name = name
        self.error_message = error_message
        super().__init__(f"Feature Disabled: {error_message or name}")


@dataclass(frozen=True)
class AccessPolicy:
    """Caller privileges relevant to flag evaluation."""

    admin_override: bool = False
    admin_read_only: bool = False


class FeatureFlag(Base):
    __tablename__ = "feature_flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {"name": self.name, "enabled": self.enabled, "error_message": self.error_message}


class FeatureFlags:
    """Evaluates and stores feature flags."""

    def __init__(
        self,
        session_factory: sessionmaker,
        defaults: Optional[Mapping[str, bool]] = None,
        admin_skippable: Optional[FrozenSet[str]] = None,
        admin_read_only_skippable: Optional[FrozenSet[str]] = None,
    ):
        self._session_factory = session_factory
        self.defaults = dict(DEFAULT_FLAGS if defaults is None else defaults)
        self.admin_skippable = ADMIN_SKIPPABLE if admin_skippable is None else frozenset(admin_skippable)
        self.admin_read_only_skippable = (
            ADMIN_READ_ONLY_SKIPPABLE if admin_read_only_skippable is None else frozenset(admin_read_only_skippable)
        )

    def enabled(self, name: str, policy: AccessPolicy = AccessPolicy()) -> bool:
        """Whether ``name`` is enabled for a caller with ``policy``.

        Raises:
            UndefinedFeatureFlagError: Unknown flag name
        """
        name = self._known(name)
        if policy.admin_override and name in self.admin_skippable:
            return True
        if policy.admin_read_only and name in self.admin_read_only_skippable:
            return True
        flag = self._find(name)
        return flag.enabled if flag is not None else self.defaults[name]

    def disabled(self, name: str, policy: AccessPolicy = AccessPolicy()) -> bool:
        return not self.enabled(name, policy)

    def raise_unless_enabled(self, name: str, policy: AccessPolicy = AccessPolicy()) -> None:
        """Raise FeatureDisabledError (with the operator's message, if any) when off."""
        name = self._known(name)
        if policy.admin_override and name in self.admin_skippable:
            return
        if policy.admin_read_only and name in self.admin_read_only_skippable:
            return
        flag = self._find(name)
        enabled = flag.enabled if flag is not None else self.defaults[name]
        if enabled:
            return
        raise FeatureDisabledError(name, flag.error_message if flag is not None else None)

    def set(self, name: str, enabled: bool, error_message: Optional[str] = None) -> FeatureFlag:
        """Create or update a flag override.

        Raises:
            ValidationError: Unknown name, missing ``enabled`` or non-printable message
        """
        if name not in self.defaults:
            raise ValidationError("name", f"name {name} has no corresponding default")
        if not isinstance(enabled, bool):
            raise ValidationError("enabled", "enabled is required")
        if error_message is not None:
            error_message = validate_printable(error_message, "error_message") or None

        with session_scope(self._session_factory) as session:
            flag = session.scalars(select(FeatureFlag).where(FeatureFlag.name == name)).first()
            if flag is None:
                flag = FeatureFlag(name=name)
                session.add(flag)
            flag.enabled = enabled
            flag.error_message = error_message
            session.flush()

        logger.info(f"Feature flag {name} set to {enabled}")
        return flag

    def all(self) -> Dict[str, dict]:
        """Effective state of every known flag (ignoring admin skips)."""
        with session_scope(self._session_factory) as session:
            overrides = {flag.name: flag for flag in session.scalars(select(FeatureFlag)).all()}
        result = {}
        for name, default in sorted(self.defaults.items()):
            flag = overrides.get(name)
            result[name] = {
                "name": name,
                "enabled": flag.enabled if flag is not None else default,
                "error_message": flag.error_message if flag is not None else None,
                "overridden": flag is not None,
            }
        return result

    def _known(self, name) -> str:
        name = str(name)
        if name not in self.defaults:
            raise UndefinedFeatureFlagError(name)
        return name

    def _find(self, name: str) -> Optional[FeatureFlag]:
        with session_scope(self._session_factory) as session:
            return session.scalars(select(FeatureFlag).where(FeatureFlag.name == name)).first()
