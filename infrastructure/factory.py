# ============================================================================
# REPOSITORY FACTORY
# ============================================================================
# STATUS: Infrastructure - Central factory for all repository instances
# PURPOSE: Select the storage backend (postgres | memory) and build the
#          repositories, queue and external clients the services need
# EXPORTS: RepositoryFactory
# DEPENDENCIES: config, infrastructure.*
# ============================================================================

"""
Repository Factory - Central Creation Point

Backend selection follows ASSESSMENT_STORAGE_BACKEND:
    postgres  psycopg repositories + Service Bus queue (deployed default)
    memory    one process-wide InMemoryStore + InMemoryQueue (local runs, tests)

Example:
    repos = RepositoryFactory.create_repositories()
    job = repos['assessment_repo'].get_job(job_id)
"""

from typing import Any, Dict, Optional
import threading

from config import AppConfig, get_config
from util_logger import LoggerFactory, ComponentType
from .interface_repository import IQueueRepository
from .memory import InMemoryQueue, InMemoryStore

logger = LoggerFactory.create_logger(ComponentType.FACTORY, "RepositoryFactory")


class RepositoryFactory:
    """
    Factory for creating repository instances.
    """

    _memory_store: Optional[InMemoryStore] = None
    _memory_queue: Optional[InMemoryQueue] = None
    _lock = threading.Lock()

    @staticmethod
    def _backend(config: Optional[AppConfig]) -> str:
        return (config or get_config()).assessment.storage_backend

    @classmethod
    def get_memory_store(cls) -> InMemoryStore:
        with cls._lock:
            if cls._memory_store is None:
                cls._memory_store = InMemoryStore()
            return cls._memory_store

    @classmethod
    def get_memory_queue(cls) -> InMemoryQueue:
        with cls._lock:
            if cls._memory_queue is None:
                cls._memory_queue = InMemoryQueue()
            return cls._memory_queue

    @classmethod
    def reset_memory_backend(cls) -> None:
        """Drop the process-wide in-memory store and queue."""
        with cls._lock:
            cls._memory_store = None
            cls._memory_queue = None

    @classmethod
    def create_repositories(cls, config: Optional[AppConfig] = None) -> Dict[str, Any]:
        """
        Create the assessment, ledger, portal and watchdog repositories.

        Returns:
            Dictionary with assessment_repo, ledger_repo, portal_repo, watchdog_repo
        """
        backend = cls._backend(config)
        logger.debug(f"🏭 Creating repositories for backend: {backend}")

        if backend == "memory":
            store = cls.get_memory_store()
            return {
                'assessment_repo': store,
                'ledger_repo': store,
                'portal_repo': store,
                'watchdog_repo': store,
            }

        from .postgresql import (
            PostgreSQLAssessmentRepository,
            PostgreSQLLedgerRepository,
            PostgreSQLPortalRepository,
            PostgreSQLWatchdogRepository,
        )
        return {
            'assessment_repo': PostgreSQLAssessmentRepository(config=config),
            'ledger_repo': PostgreSQLLedgerRepository(config=config),
            'portal_repo': PostgreSQLPortalRepository(config=config),
            'watchdog_repo': PostgreSQLWatchdogRepository(config=config),
        }

    @classmethod
    def create_queue_repository(cls, config: Optional[AppConfig] = None) -> IQueueRepository:
        """
        Create the work queue: Service Bus singleton, or the in-memory queue.
        """
        if cls._backend(config) == "memory":
            return cls.get_memory_queue()

        from .service_bus import ServiceBusRepository
        return ServiceBusRepository.instance()

    @staticmethod
    def create_vault_repository():
        """Create VaultRepository, or None when KEY_VAULT_NAME is not set."""
        if not get_config().vault.vault_name:
            logger.debug("🔐 KEY_VAULT_NAME not set; vault-backed credentials disabled")
            return None
        from .vault import VaultRepository
        return VaultRepository()

    @staticmethod
    def create_schema_deployer(config: Optional[AppConfig] = None):
        from .schema_sql import PostgreSQLSchemaDeployer
        return PostgreSQLSchemaDeployer(config=config)


__all__ = ['RepositoryFactory']
