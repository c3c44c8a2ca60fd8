# ============================================================================
# CONFIG PACKAGE INIT
# ============================================================================
# STATUS: Core - configuration entry point
# PURPOSE: Configuration package exports and process-wide singleton
# EXPORTS: All config classes, get_config singleton, debug_config helper
# PYDANTIC_MODELS: AppConfig, DatabaseConfig, QueueConfig, AssessmentConfig,
#                  MetricsApiConfig, AuditRunnerConfig, VaultConfig
# ENTRY_POINTS: from config import get_config, QueueNames
# ============================================================================

"""
Configuration Package - Domain-Specific Configuration Modules

Structure:
    config/
    ├── __init__.py              # This file - exports and singleton
    ├── app_config.py            # Main config (composes domain configs)
    ├── assessment_config.py     # Orchestrator pool / timeouts / staleness
    ├── database_config.py       # PostgreSQL
    ├── integrations_config.py   # Metrics API, audit runner, Key Vault
    ├── queue_config.py          # Service Bus queues
    └── defaults.py              # Default constants

Usage:
    from config import get_config
    config = get_config()
    pool_size = config.assessment.module_concurrency

    from config import debug_config
    info = debug_config()  # Secrets masked
"""

from typing import Optional

from .database_config import DatabaseConfig, get_postgres_connection_string
from .queue_config import QueueConfig, QueueNames
from .assessment_config import AssessmentConfig
from .integrations_config import MetricsApiConfig, AuditRunnerConfig, VaultConfig
from .app_config import AppConfig


# ============================================================================
# SINGLETON PATTERN
# ============================================================================

_config_instance: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get global configuration singleton.

    Returns:
        AppConfig instance loaded from environment
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = AppConfig.from_environment()
    return _config_instance


def reset_config() -> None:
    """Drop the cached singleton so the next get_config() re-reads the environment."""
    global _config_instance
    _config_instance = None


def debug_config() -> dict:
    """
    Get sanitized configuration for debugging (masks sensitive values).

    Returns:
        Dictionary with configuration values, secrets masked
    """
    try:
        config = get_config()
        return {
            'database': config.database.debug_dict(),
            'queues': {
                'assessment_jobs_queue': config.queues.assessment_jobs_queue,
                'connection': '***MASKED***' if config.queues.connection_string else None,
                'namespace': config.queues.namespace,
            },
            'assessment': config.assessment.model_dump(),
            'metrics_api': config.metrics_api.debug_dict(),
            'audit_runner': {
                'base_url': config.audit_runner.base_url,
                'function_key': '***MASKED***' if config.audit_runner.function_key else None,
            },
            'vault_name': config.vault.vault_name,
            'debug_mode': config.debug_mode,
            'environment': config.environment,
            'log_level': config.log_level,
        }
    except Exception as e:
        return {'error': f'Configuration validation failed: {e}'}


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    'AppConfig',
    'get_config',
    'reset_config',
    'debug_config',
    'DatabaseConfig',
    'get_postgres_connection_string',
    'QueueConfig',
    'QueueNames',
    'AssessmentConfig',
    'MetricsApiConfig',
    'AuditRunnerConfig',
    'VaultConfig',
]
