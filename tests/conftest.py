"""
Root conftest.py - sys.path, env vars, shared fixtures.

Sets up the test environment so all production code can be imported
without database connections, Service Bus or Azure credentials. Every
service is wired against the in-memory backend.
"""

import os
import sys
import hashlib
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to sys.path so 'core', 'services', 'config', etc. are importable
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture(autouse=True, scope="session")
def set_minimal_env_vars():
    """
    Set minimal environment variables to prevent import crashes.

    function_app-level singletons read configuration at import time. We
    provide safe defaults so imports succeed without Azure infrastructure.
    """
    defaults = {
        "ASSESSMENT_STORAGE_BACKEND": "memory",
        "ASSESSMENT_DB_HOST": "localhost",
        "ASSESSMENT_DB_NAME": "testdb",
        "SERVICE_BUS_NAMESPACE": "test.servicebus.windows.net",
        "ENVIRONMENT": "dev",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop cached config and the shared in-memory backend between tests."""
    from config import reset_config
    from infrastructure.factory import RepositoryFactory

    reset_config()
    RepositoryFactory.reset_memory_backend()
    yield
    reset_config()
    RepositoryFactory.reset_memory_backend()


class FakeClock:
    """Settable UTC clock shared by services under test."""

    def __init__(self, start: datetime = None):
        self.current = start or datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    from infrastructure.memory import InMemoryStore
    return InMemoryStore()


@pytest.fixture
def queue():
    from infrastructure.memory import InMemoryQueue
    return InMemoryQueue()


@pytest.fixture
def assessment_config():
    """Small pool, short timeout, heartbeat ticker effectively idle."""
    from config import AssessmentConfig
    return AssessmentConfig(
        module_concurrency=2,
        module_timeout_seconds=5,
        stale_threshold_minutes=10,
        heartbeat_interval_seconds=300,
        storage_backend="memory",
    )


@pytest.fixture
def connection(store):
    """Active connection seeded in the store."""
    from tests.factories.model_factories import make_connection
    conn = make_connection()
    store.add_connection(conn)
    return conn


@pytest.fixture
def valid_sha256():
    """Generate a valid 64-char SHA256 hex string for fingerprint fields."""
    return hashlib.sha256(b"test-fixture-seed").hexdigest()


@pytest.fixture
def make_sha256():
    """Factory fixture: generate deterministic SHA256 from any string."""
    def _make(seed: str) -> str:
        return hashlib.sha256(seed.encode()).hexdigest()
    return _make


@pytest.fixture
def network_findings():
    """Three distinct NETWORK findings."""
    from tests.factories.model_factories import make_finding_input
    return [make_finding_input(severity=s) for s in ("high", "medium", "low")]


@pytest.fixture
def registry(network_findings):
    """NETWORK and BACKUP fake modules."""
    from tests.factories.model_factories import make_finding_input, make_static_module
    return {
        "NETWORK": make_static_module("NETWORK", network_findings),
        "BACKUP": make_static_module("BACKUP", [make_finding_input(severity="medium")]),
    }


@pytest.fixture
def orchestrator(store, queue, assessment_config, registry, clock):
    """AssessmentOrchestrator on the in-memory store with fake modules."""
    from services.assessment_orchestrator import AssessmentOrchestrator

    return AssessmentOrchestrator(
        assessment_repo=store,
        ledger_repo=store,
        portal_repo=store,
        queue_repo=queue,
        config=assessment_config,
        queue_name="assessment-jobs",
        registry=registry,
        clock=clock,
    )
