# ============================================================================
# IN-MEMORY REPOSITORIES
# ============================================================================
# STATUS: Infrastructure - process-local storage backend
# PURPOSE: Thread-safe implementations of every repository interface for
#          local runs (ASSESSMENT_STORAGE_BACKEND=memory) and tests
# EXPORTS: InMemoryStore, InMemoryReconciliationUnit, InMemoryQueue
# INTERFACES: IAssessmentRepository, ILedgerRepository, IPortalRepository,
#             IWatchdogRepository, IQueueRepository
# ============================================================================
"""
In-Memory Repository Implementation.

Mirrors the PostgreSQL semantics that matter for correctness:
    - claim_job is a conditional update under one lock
    - save_module_outcome replaces a module's findings atomically
    - reconciliation units are serialised per customer and stage their
      writes, applying them only when the with-block exits normally

Models are copied on the way in and out so callers never alias stored state.
"""

from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
import threading
import uuid

from pydantic import BaseModel

from core.models import (
    AssessmentJob,
    ChangeStatus,
    FindingMetadataRule,
    JobStatus,
    LedgerDelta,
    LedgerEntry,
    LedgerStatus,
    ModuleResult,
    ModuleStatus,
    RawFinding,
    ScheduleTarget,
    TenantConnection,
    WatchdogRun,
)
from core.schema.updates import JobUpdateModel, ModuleResultUpdateModel
from exceptions import ResourceNotFoundError
from .base import BaseRepository
from .interface_repository import (
    IAssessmentRepository,
    ILedgerRepository,
    IPortalRepository,
    IQueueRepository,
    IReconciliationUnit,
    IWatchdogRepository,
)


def _merge(model: BaseModel, updates: dict) -> BaseModel:
    """Validated copy of model with updates applied."""
    return type(model).model_validate({**model.model_dump(), **updates})


class InMemoryReconciliationUnit(IReconciliationUnit):
    """
    Staged ledger writes for one (customer, job).

    Reads see staged writes first, then the committed ledger.
    """

    def __init__(self, store: "InMemoryStore", customer_id: str, job: AssessmentJob):
        self._store = store
        self.customer_id = customer_id
        self.job = job
        self.staged_entries: Dict[str, LedgerEntry] = {}
        self.staged_changes: Dict[str, ChangeStatus] = {}
        self.staged_delta: Optional[Tuple[LedgerDelta, datetime]] = None

    def _committed(self) -> Dict[str, LedgerEntry]:
        return self._store._ledger.get(self.customer_id, {})

    def get_existing_delta(self) -> Optional[LedgerDelta]:
        if self.job.reconciled_at is None:
            return None
        return LedgerDelta(
            job_id=self.job.job_id,
            customer_id=self.customer_id,
            new=self.job.findings_new,
            recurring=self.job.findings_recurring,
            resolved=self.job.findings_resolved,
            already_reconciled=True,
        )

    def get_entries(self, fingerprints: Sequence[str]) -> Dict[str, LedgerEntry]:
        result = {}
        with self._store._lock:
            committed = self._committed()
            for fp in fingerprints:
                entry = self.staged_entries.get(fp) or committed.get(fp)
                if entry is not None:
                    result[fp] = entry.model_copy(deep=True)
        return result

    def list_open_entries(self, module_codes: Sequence[str]) -> List[LedgerEntry]:
        codes = {c.upper() for c in module_codes}
        with self._store._lock:
            merged = {**self._committed(), **self.staged_entries}
        return [
            e.model_copy(deep=True) for e in merged.values()
            if e.status == LedgerStatus.OPEN and e.module_code.upper() in codes
        ]

    def insert_entry(self, entry: LedgerEntry) -> None:
        with self._store._lock:
            exists = entry.fingerprint in self._committed()
        if exists or entry.fingerprint in self.staged_entries:
            raise ValueError(
                f"Ledger entry already exists for {self.customer_id}/{entry.fingerprint[:12]}"
            )
        self.staged_entries[entry.fingerprint] = entry.model_copy(deep=True)

    def update_entry(self, entry: LedgerEntry) -> None:
        self.staged_entries[entry.fingerprint] = entry.model_copy(deep=True)

    def set_change_statuses(self, changes: Dict[str, ChangeStatus]) -> None:
        self.staged_changes.update(changes)

    def mark_reconciled(self, delta: LedgerDelta, now: datetime) -> None:
        self.staged_delta = (delta, now)


class InMemoryStore(
    BaseRepository,
    IAssessmentRepository,
    ILedgerRepository,
    IPortalRepository,
    IWatchdogRepository,
):
    """
    Process-local storage for every repository interface.

    One re-entrant lock guards all tables; ledger reconciliation additionally
    holds a per-customer lock for the whole unit.
    """

    def __init__(self):
        super().__init__()
        self._lock = threading.RLock()
        self._customer_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._jobs: Dict[str, AssessmentJob] = {}
        self._module_results: Dict[str, Dict[str, ModuleResult]] = {}
        self._findings: Dict[str, List[RawFinding]] = {}
        self._ledger: Dict[str, Dict[str, LedgerEntry]] = {}
        self._connections: Dict[str, TenantConnection] = {}
        self._tier_targets: List[ScheduleTarget] = []
        self._metadata_rules: List[FindingMetadataRule] = []
        self._watchdog_runs: Dict[str, WatchdogRun] = {}

    # ------------------------------------------------------------------
    # Seeding (portal-owned data)
    # ------------------------------------------------------------------

    def add_connection(self, connection: TenantConnection) -> None:
        with self._lock:
            self._connections[connection.connection_id] = connection.model_copy(deep=True)

    def add_schedule_target(self, target: ScheduleTarget) -> None:
        with self._lock:
            self._tier_targets.append(target.model_copy(deep=True))

    def add_metadata_rule(self, rule: FindingMetadataRule) -> None:
        with self._lock:
            self._metadata_rules.append(rule.model_copy(deep=True))

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()
            self._module_results.clear()
            self._findings.clear()
            self._ledger.clear()
            self._connections.clear()
            self._tier_targets.clear()
            self._metadata_rules.clear()
            self._watchdog_runs.clear()

    # ------------------------------------------------------------------
    # IAssessmentRepository
    # ------------------------------------------------------------------

    def create_job(self, job: AssessmentJob, module_results: Sequence[ModuleResult]) -> bool:
        with self._lock:
            if job.job_id in self._jobs:
                self.logger.info(f"📋 Job already exists: {job.job_id} (idempotent)")
                return False
            self._jobs[job.job_id] = job.model_copy(deep=True)
            self._module_results[job.job_id] = {
                m.module_code: m.model_copy(deep=True) for m in module_results
            }
            self._findings[job.job_id] = []
        self.logger.info(f"✅ Job created: {job.job_id} modules={job.module_codes}")
        return True

    def get_job(self, job_id: str) -> Optional[AssessmentJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def update_job(self, job_id: str, updates: JobUpdateModel) -> bool:
        update_dict = updates.to_dict(exclude_unset=True)
        if not update_dict:
            return False
        with self._error_context("job update", job_id):
            with self._lock:
                job = self._jobs.get(job_id)
                if job is None:
                    self.logger.warning(f"⚠️ Job not found for update: {job_id}")
                    return False
                if 'status' in update_dict:
                    self._validate_job_transition(job_id, job.status, JobStatus(update_dict['status']))
                self._jobs[job_id] = _merge(job, update_dict)
                return True

    def claim_job(self, job_id: str, worker_id: str, stale_before: datetime,
                  now: datetime) -> Optional[AssessmentJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            claimable = job.status == JobStatus.QUEUED or (
                job.status == JobStatus.RUNNING and (
                    job.is_stuck
                    or job.last_progress_at is None
                    or job.last_progress_at < stale_before
                )
            )
            if not claimable:
                self.logger.info(f"📋 Claim refused for {job_id}: held by another worker or terminal")
                return None
            claimed = _merge(job, {
                'status': JobStatus.RUNNING,
                'worker_id': worker_id,
                'started_at': job.started_at or now,
                'last_progress_at': now,
                'is_stuck': False,
                'stuck_since': None,
            })
            self._jobs[job_id] = claimed
            self.logger.info(f"🔒 Job {job_id} claimed by {worker_id}")
            return claimed.model_copy(deep=True)

    def record_progress(self, job_id: str, now: datetime) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            self._jobs[job_id] = _merge(job, {
                'last_progress_at': now, 'is_stuck': False, 'stuck_since': None
            })
            return True

    def finish_job(self, job_id: str, status: JobStatus, updates: JobUpdateModel) -> bool:
        with self._error_context("job finish", job_id):
            self._validate_job_transition(job_id, JobStatus.RUNNING, status)
            update_dict = updates.to_dict(exclude_unset=True)
            update_dict['status'] = status
            with self._lock:
                job = self._jobs.get(job_id)
                if job is None or job.status != JobStatus.RUNNING:
                    self.logger.warning(f"⚠️ Job {job_id} was not running; finish to {status.value} skipped")
                    return False
                self._jobs[job_id] = _merge(job, update_dict)
                return True

    def list_jobs(self, status_filter: Optional[JobStatus] = None,
                  customer_id: Optional[str] = None, limit: int = 100) -> List[AssessmentJob]:
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if (status_filter is None or j.status == status_filter)
                and (customer_id is None or j.customer_id == customer_id)
            ]
            jobs.sort(key=lambda j: j.created_at, reverse=True)
            return [j.model_copy(deep=True) for j in jobs[:limit]]

    def list_stale_running_jobs(self, stale_before: datetime, limit: int = 100) -> List[AssessmentJob]:
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if j.status == JobStatus.RUNNING
                and (j.last_progress_at is None or j.last_progress_at < stale_before)
            ]
            jobs.sort(key=lambda j: (j.last_progress_at is not None, j.last_progress_at or j.created_at))
            return [j.model_copy(deep=True) for j in jobs[:limit]]

    def list_stale_queued_jobs(self, enqueued_before: datetime, limit: int = 100) -> List[AssessmentJob]:
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if j.status == JobStatus.QUEUED and (j.last_enqueued_at or j.created_at) < enqueued_before
            ]
            jobs.sort(key=lambda j: j.last_enqueued_at or j.created_at)
            return [j.model_copy(deep=True) for j in jobs[:limit]]

    def list_reconciled_jobs(self, customer_id: str, limit: int = 2) -> List[AssessmentJob]:
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if j.customer_id == customer_id and j.reconciled_at is not None
            ]
            jobs.sort(key=lambda j: j.reconciled_at, reverse=True)
            return [j.model_copy(deep=True) for j in jobs[:limit]]

    def get_module_results(self, job_id: str) -> List[ModuleResult]:
        with self._lock:
            results = list(self._module_results.get(job_id, {}).values())
            results.sort(key=lambda m: m.sequence)
            return [m.model_copy(deep=True) for m in results]

    def _apply_module_update(self, job_id: str, module_code: str,
                             updates: ModuleResultUpdateModel) -> bool:
        update_dict = updates.to_dict(exclude_unset=True)
        results = self._module_results.get(job_id, {})
        current = results.get(module_code)
        if current is None:
            raise ResourceNotFoundError(f"Module {module_code} not found for assessment {job_id}")
        if not update_dict:
            return False
        if 'status' in update_dict:
            self._validate_module_transition(
                job_id, module_code, current.status, ModuleStatus(update_dict['status'])
            )
        results[module_code] = _merge(current, update_dict)
        return True

    def update_module_result(self, job_id: str, module_code: str,
                             updates: ModuleResultUpdateModel) -> bool:
        with self._error_context("module result update", f"{job_id}/{module_code}"):
            with self._lock:
                return self._apply_module_update(job_id, module_code.upper(), updates)

    def save_module_outcome(self, job_id: str, module_code: str,
                            updates: ModuleResultUpdateModel,
                            findings: Sequence[RawFinding]) -> bool:
        module_code = module_code.upper()
        with self._error_context("module outcome save", f"{job_id}/{module_code}"):
            with self._lock:
                updated = self._apply_module_update(job_id, module_code, updates)
                kept = [f for f in self._findings.get(job_id, []) if f.module_code != module_code]
                kept.extend(f.model_copy(deep=True) for f in findings)
                self._findings[job_id] = kept
        self.logger.info(f"💾 Module {module_code} saved for {job_id}: {len(findings)} findings")
        return updated

    def list_raw_findings(self, job_id: str,
                          module_codes: Optional[Sequence[str]] = None) -> List[RawFinding]:
        with self._lock:
            findings = self._findings.get(job_id, [])
            if module_codes is not None:
                codes = {c.upper() for c in module_codes}
                findings = [f for f in findings if f.module_code in codes]
            return [f.model_copy(deep=True) for f in findings]

    # ------------------------------------------------------------------
    # ILedgerRepository
    # ------------------------------------------------------------------

    @contextmanager
    def reconciliation_unit(self, customer_id: str, job_id: str):
        customer_lock = self._customer_lock(customer_id)
        with customer_lock:
            with self._lock:
                job = self._jobs.get(job_id)
                if job is None:
                    raise ResourceNotFoundError(f"Assessment {job_id} not found")
                job = job.model_copy(deep=True)
            unit = InMemoryReconciliationUnit(self, customer_id, job)
            yield unit
            self._commit_unit(unit)

    def _customer_lock(self, customer_id: str) -> threading.Lock:
        with self._lock:
            return self._customer_locks[customer_id]

    def _commit_unit(self, unit: InMemoryReconciliationUnit) -> None:
        with self._lock:
            ledger = self._ledger.setdefault(unit.customer_id, {})
            ledger.update(unit.staged_entries)

            if unit.staged_changes:
                self._findings[unit.job.job_id] = [
                    _merge(f, {'change_status': unit.staged_changes[f.fingerprint]})
                    if f.fingerprint in unit.staged_changes else f
                    for f in self._findings.get(unit.job.job_id, [])
                ]

            if unit.staged_delta is not None:
                delta, now = unit.staged_delta
                job = self._jobs[unit.job.job_id]
                if job.reconciled_at is None:
                    self._jobs[job.job_id] = _merge(job, {
                        'findings_new': delta.new,
                        'findings_recurring': delta.recurring,
                        'findings_resolved': delta.resolved,
                        'reconciled_at': now,
                    })

    def get_entry(self, customer_id: str, fingerprint: str) -> Optional[LedgerEntry]:
        with self._lock:
            entry = self._ledger.get(customer_id, {}).get(fingerprint)
            return entry.model_copy(deep=True) if entry else None

    def get_entries(self, customer_id: str, fingerprints: Sequence[str]) -> Dict[str, LedgerEntry]:
        with self._lock:
            ledger = self._ledger.get(customer_id, {})
            return {
                fp: ledger[fp].model_copy(deep=True)
                for fp in fingerprints if fp in ledger
            }

    def list_entries(self, customer_id: str, status: Optional[LedgerStatus] = None,
                     module_code: Optional[str] = None) -> List[LedgerEntry]:
        with self._lock:
            entries = [
                e for e in self._ledger.get(customer_id, {}).values()
                if (status is None or e.status == LedgerStatus(status))
                and (module_code is None or e.module_code == module_code.upper())
            ]
        entries.sort(key=lambda e: (e.module_code, -e.last_seen_at.timestamp()))
        return [e.model_copy(deep=True) for e in entries]

    def list_resolved_by_job(self, customer_id: str, job_id: str) -> List[LedgerEntry]:
        with self._lock:
            entries = [
                e for e in self._ledger.get(customer_id, {}).values()
                if e.status == LedgerStatus.RESOLVED and e.resolved_by_job_id == job_id
            ]
        entries.sort(key=lambda e: e.module_code)
        return [e.model_copy(deep=True) for e in entries]

    # ------------------------------------------------------------------
    # IPortalRepository
    # ------------------------------------------------------------------

    def get_connection(self, connection_id: str) -> Optional[TenantConnection]:
        with self._lock:
            connection = self._connections.get(connection_id)
            return connection.model_copy(deep=True) if connection else None

    def _last_completed_at(self, customer_id: str, module_code: str) -> Optional[datetime]:
        latest = None
        for job in self._jobs.values():
            if job.customer_id != customer_id:
                continue
            result = self._module_results.get(job.job_id, {}).get(module_code)
            if result and result.status == ModuleStatus.COMPLETED and result.completed_at:
                if latest is None or result.completed_at > latest:
                    latest = result.completed_at
        return latest

    def list_schedule_targets(self) -> List[ScheduleTarget]:
        with self._lock:
            targets = []
            for target in self._tier_targets:
                connection = self._connections.get(target.connection_id)
                if connection is not None and not connection.is_active:
                    continue
                completed = self._last_completed_at(target.customer_id, target.module_code.upper())
                targets.append(_merge(target, {
                    'last_completed_at': completed or target.last_completed_at
                }))
            return targets

    def list_finding_metadata_rules(self) -> List[FindingMetadataRule]:
        with self._lock:
            rules = [r for r in self._metadata_rules if r.is_active]
        rules.sort(key=lambda r: (r.priority, r.rule_id))
        return [r.model_copy(deep=True) for r in rules]

    # ------------------------------------------------------------------
    # IWatchdogRepository
    # ------------------------------------------------------------------

    def log_watchdog_run(self, run: WatchdogRun) -> Optional[str]:
        with self._lock:
            self._watchdog_runs[run.run_id] = run.model_copy(deep=True)
        return run.run_id

    def update_watchdog_run(self, run: WatchdogRun) -> bool:
        with self._lock:
            if run.run_id not in self._watchdog_runs:
                return False
            self._watchdog_runs[run.run_id] = run.model_copy(deep=True)
            return True

    def list_watchdog_runs(self) -> List[WatchdogRun]:
        with self._lock:
            runs = sorted(self._watchdog_runs.values(), key=lambda r: r.started_at)
            return [r.model_copy(deep=True) for r in runs]


class InMemoryQueue(IQueueRepository):
    """
    Records sent messages per queue; tests and local runs drain it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._messages: Dict[str, List[BaseModel]] = defaultdict(list)

    def send_message(self, queue_name: str, message: BaseModel) -> str:
        with self._lock:
            self._messages[queue_name].append(message.model_copy(deep=True))
        return f"mem_{uuid.uuid4().hex[:12]}"

    def messages(self, queue_name: str) -> List[BaseModel]:
        with self._lock:
            return list(self._messages.get(queue_name, []))

    def drain(self, queue_name: str) -> List[BaseModel]:
        with self._lock:
            return self._messages.pop(queue_name, [])


__all__ = ['InMemoryStore', 'InMemoryReconciliationUnit', 'InMemoryQueue']
