"""
Main Application Configuration.

Composes domain-specific configuration modules:
    - DatabaseConfig (PostgreSQL)
    - QueueConfig (Service Bus queues)
    - AssessmentConfig (orchestrator pool, timeouts, staleness)
    - MetricsApiConfig (rate-limited monitoring API)
    - AuditRunnerConfig (external audit runner)
    - VaultConfig (Key Vault)

Exports:
    AppConfig: Main configuration class

Pattern:
    Composition over inheritance - domain configs are composed, not inherited.
"""

import os
from pydantic import BaseModel, Field

from .database_config import DatabaseConfig
from .queue_config import QueueConfig
from .assessment_config import AssessmentConfig
from .integrations_config import MetricsApiConfig, AuditRunnerConfig, VaultConfig
from .defaults import AppDefaults


class AppConfig(BaseModel):
    """
    Application configuration - composition of domain configs.
    """

    debug_mode: bool = Field(
        default=AppDefaults.DEBUG_MODE,
        description="Enable verbose diagnostics (DEBUG_MODE=true)"
    )

    environment: str = Field(
        default=AppDefaults.ENVIRONMENT,
        description="Environment name (dev, qa, prod)"
    )

    log_level: str = Field(
        default=AppDefaults.LOG_LEVEL,
        description="Default log level"
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    queues: QueueConfig = Field(default_factory=QueueConfig)
    assessment: AssessmentConfig = Field(default_factory=AssessmentConfig)
    metrics_api: MetricsApiConfig = Field(default_factory=MetricsApiConfig)
    audit_runner: AuditRunnerConfig = Field(default_factory=AuditRunnerConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)

    @classmethod
    def from_environment(cls) -> "AppConfig":
        """Load all domain configs from environment variables."""
        return cls(
            debug_mode=os.environ.get("DEBUG_MODE", "false").lower() == "true",
            environment=os.environ.get("ENVIRONMENT", AppDefaults.ENVIRONMENT),
            log_level=os.environ.get("LOG_LEVEL", AppDefaults.LOG_LEVEL),
            database=DatabaseConfig.from_environment(),
            queues=QueueConfig.from_environment(),
            assessment=AssessmentConfig.from_environment(),
            metrics_api=MetricsApiConfig.from_environment(),
            audit_runner=AuditRunnerConfig.from_environment(),
            vault=VaultConfig.from_environment(),
        )
