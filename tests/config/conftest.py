"""
Config test fixtures - clean environment via monkeypatch.
"""

import pytest


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all env vars that config modules might read, for isolation."""
    env_vars_to_clear = [
        "ASSESSMENT_STORAGE_BACKEND", "ASSESSMENT_MODULE_CONCURRENCY",
        "ASSESSMENT_MODULE_TIMEOUT_SECONDS", "ASSESSMENT_STALE_THRESHOLD_MINUTES",
        "ASSESSMENT_HEARTBEAT_SECONDS",
        "ASSESSMENT_DB_HOST", "ASSESSMENT_DB_NAME", "ASSESSMENT_DB_USER",
        "ASSESSMENT_DB_PASSWORD", "ASSESSMENT_DB_SCHEMA",
        "ServiceBusConnection", "SERVICE_BUS_NAMESPACE", "SERVICE_BUS_ASSESSMENT_QUEUE",
        "METRICS_API_COMPANY", "METRICS_API_ACCESS_ID", "METRICS_API_BACKOFF_SECONDS",
        "METRICS_API_MAX_RETRIES",
        "WATCHDOG_ENABLED", "WATCHDOG_STALE_THRESHOLD_MINUTES", "WATCHDOG_QUEUED_TIMEOUT_MINUTES",
        "WATCHDOG_MAX_REDRIVES", "WATCHDOG_AUTO_REDRIVE", "WATCHDOG_BATCH_SIZE",
        "KEY_VAULT_NAME", "ENVIRONMENT",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch
