"""
Repository Abstract Base Classes - Single Point of Truth.

Enforces exact method signatures across the PostgreSQL and in-memory
implementations. All parameter names, return types and method signatures
are defined here and nowhere else.

Exports:
    IAssessmentRepository: Jobs, module results and raw findings
    IReconciliationUnit: One all-or-nothing ledger transaction
    ILedgerRepository: Customer findings ledger
    IPortalRepository: Read-only portal data (connections, schedules, rules)
    IWatchdogRepository: Watchdog audit records
    IQueueRepository: Work queue
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from core.models import (
    AssessmentJob,
    ModuleResult,
    RawFinding,
    LedgerEntry,
    LedgerDelta,
    LedgerStatus,
    ChangeStatus,
    JobStatus,
    TenantConnection,
    ScheduleTarget,
    FindingMetadataRule,
    WatchdogRun,
)
from core.schema.updates import JobUpdateModel, ModuleResultUpdateModel


class IAssessmentRepository(ABC):
    """
    Assessment job repository interface.

    Jobs, module results and raw findings are owned by the orchestrator.
    """

    @abstractmethod
    def create_job(self, job: AssessmentJob, module_results: Sequence[ModuleResult]) -> bool:
        """Create a job and its pending module results in one transaction"""
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[AssessmentJob]:
        pass

    @abstractmethod
    def update_job(self, job_id: str, updates: JobUpdateModel) -> bool:
        pass

    @abstractmethod
    def claim_job(
        self,
        job_id: str,
        worker_id: str,
        stale_before: datetime,
        now: datetime
    ) -> Optional[AssessmentJob]:
        """
        Atomically claim a job for a worker.

        Succeeds for QUEUED jobs and for RUNNING jobs that are flagged stuck
        or whose heartbeat is older than stale_before. Returns the claimed
        job, or None when another worker holds it or it is terminal.
        """
        pass

    @abstractmethod
    def record_progress(self, job_id: str, now: datetime) -> bool:
        """Bump last_progress_at and clear the stuck flag of a RUNNING job"""
        pass

    @abstractmethod
    def finish_job(self, job_id: str, status: JobStatus, updates: JobUpdateModel) -> bool:
        """Move a RUNNING job to a terminal status; False if it was not RUNNING"""
        pass

    @abstractmethod
    def list_jobs(
        self,
        status_filter: Optional[JobStatus] = None,
        customer_id: Optional[str] = None,
        limit: int = 100
    ) -> List[AssessmentJob]:
        pass

    @abstractmethod
    def list_stale_running_jobs(self, stale_before: datetime, limit: int = 100) -> List[AssessmentJob]:
        pass

    @abstractmethod
    def list_stale_queued_jobs(self, enqueued_before: datetime, limit: int = 100) -> List[AssessmentJob]:
        """QUEUED jobs whose last send (or creation, if never sent) is older than enqueued_before"""
        pass

    @abstractmethod
    def list_reconciled_jobs(self, customer_id: str, limit: int = 2) -> List[AssessmentJob]:
        """Most recently reconciled jobs for a customer, newest first"""
        pass

    @abstractmethod
    def get_module_results(self, job_id: str) -> List[ModuleResult]:
        """Module results ordered by sequence"""
        pass

    @abstractmethod
    def update_module_result(self, job_id: str, module_code: str, updates: ModuleResultUpdateModel) -> bool:
        pass

    @abstractmethod
    def save_module_outcome(
        self,
        job_id: str,
        module_code: str,
        updates: ModuleResultUpdateModel,
        findings: Sequence[RawFinding]
    ) -> bool:
        """
        Write a module's terminal result and replace its raw findings.

        Both happen in one transaction, so a re-run module never leaves
        findings from an earlier attempt behind.
        """
        pass

    @abstractmethod
    def list_raw_findings(self, job_id: str, module_codes: Optional[Sequence[str]] = None) -> List[RawFinding]:
        pass


class IReconciliationUnit(ABC):
    """
    One ledger transaction for one (customer, job).

    Obtained from ILedgerRepository.reconciliation_unit(); commits when the
    with-block exits normally and rolls back on any exception.
    """

    @abstractmethod
    def get_existing_delta(self) -> Optional[LedgerDelta]:
        """Stored delta when the job is already reconciled, else None"""
        pass

    @abstractmethod
    def get_entries(self, fingerprints: Sequence[str]) -> Dict[str, LedgerEntry]:
        pass

    @abstractmethod
    def list_open_entries(self, module_codes: Sequence[str]) -> List[LedgerEntry]:
        pass

    @abstractmethod
    def insert_entry(self, entry: LedgerEntry) -> None:
        pass

    @abstractmethod
    def update_entry(self, entry: LedgerEntry) -> None:
        pass

    @abstractmethod
    def set_change_statuses(self, changes: Dict[str, ChangeStatus]) -> None:
        """Set change_status on this job's raw findings, keyed by fingerprint"""
        pass

    @abstractmethod
    def mark_reconciled(self, delta: LedgerDelta, now: datetime) -> None:
        """Store the delta on the job and set reconciled_at"""
        pass


class ILedgerRepository(ABC):
    """
    Customer findings ledger interface.

    Only the finding reconciler writes, through reconciliation_unit().
    """

    @abstractmethod
    def reconciliation_unit(self, customer_id: str, job_id: str) -> AbstractContextManager:
        """
        Open a transaction serialised per customer.

        Yields an IReconciliationUnit.
        """
        pass

    @abstractmethod
    def get_entry(self, customer_id: str, fingerprint: str) -> Optional[LedgerEntry]:
        pass

    @abstractmethod
    def get_entries(self, customer_id: str, fingerprints: Sequence[str]) -> Dict[str, LedgerEntry]:
        """Entries for the given fingerprints keyed by fingerprint; unknown ones are absent."""
        pass

    @abstractmethod
    def list_entries(
        self,
        customer_id: str,
        status: Optional[LedgerStatus] = None,
        module_code: Optional[str] = None
    ) -> List[LedgerEntry]:
        pass

    @abstractmethod
    def list_resolved_by_job(self, customer_id: str, job_id: str) -> List[LedgerEntry]:
        pass


class IPortalRepository(ABC):
    """
    Read-only access to portal data owned by the CRUD surface.
    """

    @abstractmethod
    def get_connection(self, connection_id: str) -> Optional[TenantConnection]:
        pass

    @abstractmethod
    def list_schedule_targets(self) -> List[ScheduleTarget]:
        pass

    @abstractmethod
    def list_finding_metadata_rules(self) -> List[FindingMetadataRule]:
        pass


class IWatchdogRepository(ABC):
    """
    Watchdog audit trail interface.
    """

    @abstractmethod
    def log_watchdog_run(self, run: WatchdogRun) -> Optional[str]:
        pass

    @abstractmethod
    def update_watchdog_run(self, run: WatchdogRun) -> bool:
        pass


class IQueueRepository(ABC):
    """
    Queue repository interface.

    Implementations handle authentication, retries and message encoding.
    """

    @abstractmethod
    def send_message(self, queue_name: str, message: BaseModel) -> str:
        """Send a message, returning its message id"""
        pass


__all__ = [
    'IAssessmentRepository',
    'IReconciliationUnit',
    'ILedgerRepository',
    'IPortalRepository',
    'IWatchdogRepository',
    'IQueueRepository',
]
