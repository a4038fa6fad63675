"""Wiring of the lifecycle services from an AppConfig.

Shared by the Flask app factory and the operator CLI so both run the same
stack against the same database.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.config.settings import AppConfig
from app.core.broker import BrokerClient
from app.core.database import create_schema, make_engine, make_session_factory
from app.core.feature_flags import FeatureFlags
from app.core.lifecycle.events import AuditEventRecorder, EventRecorder
from app.core.lifecycle.jobs import make_job_runner
from app.core.lifecycle.manager import LifecycleManager
from app.core.lifecycle.operations import OperationStateStore
from app.core.lifecycle.resources import ResourceRepository

logger = logging.getLogger(__name__)


@dataclass
class LifecycleServices:
    engine: Engine
    session_factory: sessionmaker
    store: OperationStateStore
    repository: ResourceRepository
    flags: FeatureFlags
    manager: LifecycleManager

    def database_ready(self) -> bool:
        """Whether the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.warning(f"Database not ready: {exc}")
            return False

    def shutdown(self, wait: bool = True) -> None:
        self.manager.shutdown(wait=wait)
        self.engine.dispose()


def build_services(
    cfg: AppConfig,
    recorder: Optional[EventRecorder] = None,
    client: Optional[BrokerClient] = None,
) -> LifecycleServices:
    """Create engine, schema and the lifecycle manager for ``cfg``."""
    engine = make_engine(cfg.database_url)
    create_schema(engine)
    session_factory = make_session_factory(engine)

    store = OperationStateStore(session_factory)
    repository = ResourceRepository(session_factory)
    flags = FeatureFlags(session_factory)
    runner = make_job_runner(store, cfg.job_execution_mode, cfg.job_workers)
    manager = LifecycleManager(
        store,
        repository,
        client or BrokerClient(timeout=cfg.broker_client_timeout, api_version=cfg.broker_api_version),
        runner,
        recorder or AuditEventRecorder(),
        flags=flags,
    )
    logger.info(f"Lifecycle services ready (jobs={cfg.job_execution_mode}, workers={cfg.job_workers})")
    return LifecycleServices(engine, session_factory, store, repository, flags, manager)
