# ============================================================================
# BASE REPOSITORY - PURE ABSTRACT CLASS
# ============================================================================
# STATUS: Infrastructure - Repository hierarchy root
# PURPOSE: Common error handling, transition checks and logging for all
#          repositories (PostgreSQL and in-memory)
# ============================================================================
"""
Base Repository - Pure Abstract Class.

Abstract base repository class that all storage-specific repositories inherit from.
Contains NO storage implementation details, only common validation logic,
error handling patterns, and logging infrastructure.

Architecture:
    BaseRepository (this file - pure abstract)
        |
    Storage-specific bases (PostgreSQLRepository, InMemoryStore)
        |
    Domain repositories (assessment, ledger, portal, watchdog)

Exports:
    BaseRepository: Abstract base class for repositories
"""

from abc import ABC
from contextlib import contextmanager
from typing import Optional
import logging

from core.models import JobStatus, ModuleStatus
from core.logic.transitions import can_job_transition, can_module_transition
from exceptions import ContractViolationError, InvalidJobStateError
from util_logger import LoggerFactory, ComponentType


class BaseRepository(ABC):
    """
    Pure abstract base repository with common validation logic.

    Responsibilities:
    ----------------
    - Error handling with consistent patterns
    - Logging setup
    - Status transition validation for the job and module state machines

    NOT Responsible For:
    -------------------
    - Connection management
    - Query execution
    - Transaction management
    """

    def __init__(self):
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        return LoggerFactory.create_logger(
            ComponentType.REPOSITORY,
            self.__class__.__name__
        )

    @contextmanager
    def _error_context(self, operation: str, entity_id: Optional[str] = None):
        """
        Context manager for consistent error handling across all operations.

        Usage:
            with self._error_context("job update", job_id):
                self._execute_update(job_id, updates)

        Every exception is logged with the operation and entity id, then
        re-raised unchanged.
        """
        try:
            yield
        except Exception as e:
            error_msg = f"❌ {operation} failed"
            if entity_id:
                error_msg += f" for {entity_id}"
            error_msg += f": {e}"
            self.logger.error(error_msg)
            raise

    def _validate_job_transition(self, job_id: str, current: JobStatus, target: JobStatus) -> None:
        if not isinstance(target, JobStatus):
            raise ContractViolationError(
                f"Job status must be JobStatus, got {type(target).__name__}"
            )
        if not can_job_transition(current, target):
            raise InvalidJobStateError(
                f"Invalid job transition for {job_id}: {current.value} -> {target.value}",
                current_status=current.value
            )

    def _validate_module_transition(
        self,
        job_id: str,
        module_code: str,
        current: ModuleStatus,
        target: ModuleStatus
    ) -> None:
        if not isinstance(target, ModuleStatus):
            raise ContractViolationError(
                f"Module status must be ModuleStatus, got {type(target).__name__}"
            )
        if not can_module_transition(current, target):
            raise InvalidJobStateError(
                f"Invalid module transition for {job_id}/{module_code}: "
                f"{current.value} -> {target.value}",
                current_status=current.value
            )
