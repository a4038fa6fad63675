"""Pytest shared fixtures for lifecycle tests."""
import json
import os
import pathlib
import sys
import tempfile
from types import SimpleNamespace

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JOB_EXECUTION_MODE", "inline")
os.environ.setdefault("AUDIT_LOG_DIR", tempfile.mkdtemp(prefix="lifecycle-audit-"))

import pytest
import requests

from app.config.settings import AppConfig
from app.core.broker import BrokerClient
from app.core.database import create_schema, make_engine, make_session_factory
from app.core.feature_flags import FeatureFlags
from app.core.lifecycle.events import EventRecorder
from app.core.lifecycle.jobs import InlineJobRunner
from app.core.lifecycle.manager import LifecycleManager
from app.core.lifecycle.operations import OperationStateStore
from app.core.lifecycle.resources import ResourceRepository


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching real brokers.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _stub_request(method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected network access in tests: {method} {url}")

    monkeypatch.setattr(requests, "request", _stub_request)


class StubBrokerResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        self.content = text.encode("utf-8")

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeBrokerHTTP:
    """Replaces requests.request; answers per HTTP method and records calls."""

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.default = StubBrokerResponse(200, {})

    def respond(self, method: str, response) -> None:
        """Set the answer for a method: a StubBrokerResponse, an exception or a callable."""
        self.responses[method.upper()] = response

    def __call__(self, method, url, **kwargs):
        self.calls.append(SimpleNamespace(method=method, url=url, kwargs=kwargs))
        response = self.responses.get(method.upper(), self.default)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(method, url, **kwargs)
        return response

    def methods(self):
        return [call.method for call in self.calls]


class RecordingRecorder(EventRecorder):
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


# ─────────────────────────────────────────────────────────────────────────────
# Persistence
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def engine(tmp_path):
    """File-backed SQLite so worker threads get their own connections."""
    eng = make_engine(f"sqlite:///{tmp_path / 'lifecycle.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def store(session_factory):
    return OperationStateStore(session_factory)


@pytest.fixture()
def repository(session_factory):
    return ResourceRepository(session_factory)


@pytest.fixture()
def flags(session_factory):
    return FeatureFlags(session_factory)


# ─────────────────────────────────────────────────────────────────────────────
# Brokers and resources
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def broker_http(monkeypatch):
    fake = FakeBrokerHTTP()
    monkeypatch.setattr(requests, "request", fake)
    return fake


@pytest.fixture()
def broker(repository):
    return repository.register_broker("postgres-broker", "https://broker.example.test", "broker-user", "broker-pass")


@pytest.fixture()
def instance(repository, broker):
    return repository.add_instance("orders-db", broker.guid, "svc-postgres", "plan-small")


@pytest.fixture()
def key(repository, instance):
    return repository.add_key("orders-key", instance.guid)


@pytest.fixture()
def recorder():
    return RecordingRecorder()


@pytest.fixture()
def manager(store, repository, flags, recorder):
    return LifecycleManager(
        store,
        repository,
        BrokerClient(timeout=5),
        InlineJobRunner(store),
        recorder,
        flags=flags,
    )


def make_config(**overrides) -> AppConfig:
    base = dict(
        demo_mode=True,
        secret_key="secret",
        database_url="sqlite://",
        broker_client_timeout=5.0,
        broker_api_version="2.15",
        job_execution_mode="inline",
        job_workers=2,
        audit_log_signing_key="signing-key",
        stuck_operation_minutes=60,
        log_level="INFO",
    )
    base.update(overrides)
    return AppConfig(**base)


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running stack)"
    )
