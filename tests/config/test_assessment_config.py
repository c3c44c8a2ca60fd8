"""
Configuration loading tests - defaults, environment overrides and validation.
"""

import pytest
from pydantic import ValidationError

from config import (
    AssessmentConfig,
    AuditRunnerConfig,
    MetricsApiConfig,
    get_config,
    reset_config,
)
from services.watchdog_service import WatchdogConfig


@pytest.fixture(autouse=True)
def fresh_singleton():
    reset_config()
    yield
    reset_config()


class TestAssessmentConfig:

    def test_defaults(self, clean_env):
        config = AssessmentConfig.from_environment()

        assert config.module_concurrency == 3
        assert config.module_timeout_seconds == 600
        assert config.stale_threshold_minutes == 10
        assert config.heartbeat_interval_seconds == 60
        assert config.storage_backend == "postgres"

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("ASSESSMENT_MODULE_CONCURRENCY", "8")
        clean_env.setenv("ASSESSMENT_STALE_THRESHOLD_MINUTES", "25")
        clean_env.setenv("ASSESSMENT_STORAGE_BACKEND", "MEMORY")

        config = AssessmentConfig.from_environment()

        assert config.module_concurrency == 8
        assert config.stale_threshold_minutes == 25
        assert config.storage_backend == "memory"

    def test_unknown_backend_rejected(self, clean_env):
        clean_env.setenv("ASSESSMENT_STORAGE_BACKEND", "cosmos")
        with pytest.raises(ValidationError):
            AssessmentConfig.from_environment()

    @pytest.mark.parametrize("concurrency", [0, 33])
    def test_concurrency_bounds(self, concurrency):
        with pytest.raises(ValidationError):
            AssessmentConfig(module_concurrency=concurrency)


class TestAppConfig:

    def test_singleton_reads_environment_once(self, clean_env):
        clean_env.setenv("ASSESSMENT_STORAGE_BACKEND", "memory")
        first = get_config()

        clean_env.setenv("ASSESSMENT_STORAGE_BACKEND", "postgres")
        assert get_config() is first
        assert first.assessment.storage_backend == "memory"

        reset_config()
        assert get_config().assessment.storage_backend == "postgres"

    def test_environment_name(self, clean_env):
        clean_env.setenv("ENVIRONMENT", "prod")
        assert get_config().environment == "prod"


class TestIntegrationConfigs:

    def test_backoff_schedule_from_environment(self, clean_env):
        clean_env.setenv("METRICS_API_BACKOFF_SECONDS", "2, 4,8")
        clean_env.setenv("METRICS_API_MAX_RETRIES", "5")

        config = MetricsApiConfig.from_environment()

        assert config.backoff_schedule_seconds == (2.0, 4.0, 8.0)
        assert config.max_retries == 5

    def test_default_backoff_schedule(self, clean_env):
        config = MetricsApiConfig.from_environment()
        assert config.backoff_schedule_seconds == (1.0, 5.0, 15.0)
        assert config.base_url is None

    def test_negative_backoff_rejected(self):
        with pytest.raises(ValidationError):
            MetricsApiConfig(backoff_schedule_seconds=(1.0, -5.0))

    def test_company_builds_base_url(self):
        config = MetricsApiConfig(company="contoso")
        assert config.base_url == "https://contoso.logicmonitor.com/santaba/rest"

    def test_audit_runner_environment(self, monkeypatch):
        monkeypatch.setenv("AUDIT_API_URL", "https://runner.example.net/api/")
        monkeypatch.setenv("AUDIT_API_KEY", "fn-key")

        config = AuditRunnerConfig.from_environment()

        assert config.base_url == "https://runner.example.net/api"
        assert config.function_key == "fn-key"


class TestWatchdogConfig:

    def test_defaults(self, clean_env):
        config = WatchdogConfig.from_environment()
        assert config.enabled is True
        assert config.auto_redrive is True
        assert config.stale_threshold_minutes == 10

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("WATCHDOG_ENABLED", "False")
        clean_env.setenv("WATCHDOG_MAX_REDRIVES", "1")
        clean_env.setenv("WATCHDOG_AUTO_REDRIVE", "false")

        config = WatchdogConfig.from_environment()

        assert config.enabled is False
        assert config.max_redrives == 1
        assert config.auto_redrive is False
