"""Core Business Logic Module

This module provides the service lifecycle logic, independent of HTTP
frameworks.

Architecture:
    - Pure Python (no Flask dependencies in core logic)
    - Testable against an in-memory SQLite database
    - Reusable across different interfaces (HTTP API, CLI)

Module Structure:
    - broker/           : HTTP client for service brokers
    - lifecycle/        : Operation state, actions, jobs and the orchestrator
    - database.py       : SQLAlchemy engine/session helpers
    - feature_flags.py  : Persisted feature flags and access policy
    - services.py       : Wiring of the above from an AppConfig
    - validators.py     : Input validation (names, URLs, printable text)

Usage Pattern:
    These modules are NOT auto-imported. Import explicitly when needed:
        from app.core.lifecycle.manager import LifecycleManager
        from app.core.broker import BrokerClient
        from app.core.feature_flags import AccessPolicy, FeatureFlags

Public APIs:
    Orchestrator (app.core.lifecycle.manager):
        - LifecycleManager.request_mutation()
        - LifecycleManager.create_service_instance() / update / delete
        - LifecycleManager.create_service_key() / delete
        - OperationHandle

    Operation state (app.core.lifecycle.operations):
        - OperationStateStore.begin_operation() / complete_operation()
        - OperationStateStore.lock_scope() -> ScopeLock

    Broker (app.core.broker):
        - BrokerClient.invoke() -> BrokerResult
"""
