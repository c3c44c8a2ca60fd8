# ============================================================================
# ASSESSMENT ORCHESTRATOR
# ============================================================================
# STATUS: Service layer - assessment job lifecycle
# PURPOSE: Start, run, finalize, cancel and restart assessment jobs
# EXPORTS: AssessmentOrchestrator
# DEPENDENCIES: services.module_executor, services.finding_reconciler,
#               infrastructure repositories and queue
# ============================================================================
"""
Assessment Orchestrator.

Lifecycle of one job:

    start()     validate, persist QUEUED job + PENDING module results,
                send a queue message, return
    run()       claim (QUEUED -> RUNNING, or RUNNING -> RUNNING when the job is
                stuck or stale), execute every non-terminal module on a fixed
                thread pool, then finalize
    finalize()  reconcile findings into the ledger, aggregate counters and
                score, move the job to COMPLETED or FAILED

Every module state transition bumps the job heartbeat (last_progress_at)
and clears is_stuck. A ticker thread also bumps it while modules are
running, so a long module does not make its job look stalled.

Cancellation is checked when a module is about to start: modules not yet
started are SKIPPED, modules already running finish normally.

Re-delivery safety:
    A message only carries the job id. The worker re-reads module results
    and runs only the non-terminal ones, so a completed module is never run
    or recorded twice. A late write from a worker that lost its claim is
    rejected by the module transition rules.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
import threading
import traceback
import uuid

from config import AssessmentConfig, get_config
from core.logic import (
    all_modules_terminal,
    calculate_health_score,
    calculate_progress_percent,
    completed_module_codes,
    count_by_severity,
    is_heartbeat_stale,
    is_job_terminal,
    is_module_terminal,
    to_raw_finding,
)
from core.models import (
    AssessmentJob,
    AssessmentStatusView,
    JobStatus,
    ModuleResult,
    ModuleStatus,
    ModuleStatusView,
    TriggerType,
    normalize_module_codes,
)
from core.schema import AssessmentQueueMessage, JobUpdateModel, ModuleResultUpdateModel, QueueReason
from exceptions import (
    AssessmentValidationError,
    InvalidJobStateError,
    ReconciliationError,
    ResourceNotFoundError,
    ServiceBusError,
)
from util_logger import LoggerFactory, ComponentType
from .audit_modules import ALL_MODULES, AuditModule, ModuleContext
from .finding_reconciler import FindingReconciler
from .module_executor import ModuleExecutor

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "AssessmentOrchestrator")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _HeartbeatTicker:
    """Bumps the job heartbeat on a fixed interval until stopped."""

    def __init__(self, beat: Callable[[], Any], interval_seconds: float, name: str):
        self._beat = beat
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._beat()
            except Exception as e:
                logger.warning(f"⚠️ [ORCHESTRATOR] Heartbeat failed: {e}")

    def __enter__(self) -> "_HeartbeatTicker":
        self._thread.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._stop.set()
        self._thread.join(timeout=5)


class AssessmentOrchestrator:
    """
    Owns jobs, module results and raw findings while a job is active.

    Use create() to wire the configured backends; the constructor takes
    every collaborator explicitly so tests can pass in-memory ones.
    """

    def __init__(
        self,
        assessment_repo,
        ledger_repo,
        portal_repo,
        queue_repo,
        config: Optional[AssessmentConfig] = None,
        queue_name: Optional[str] = None,
        executor: Optional[ModuleExecutor] = None,
        reconciler: Optional[FindingReconciler] = None,
        registry: Optional[Dict[str, AuditModule]] = None,
        credential_provider=None,
        metrics_factory=None,
        audit_runner=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.assessment_repo = assessment_repo
        self.ledger_repo = ledger_repo
        self.portal_repo = portal_repo
        self.queue_repo = queue_repo
        self.config = config or get_config().assessment
        self.queue_name = queue_name or get_config().queues.assessment_jobs_queue
        self.registry = ALL_MODULES if registry is None else registry
        self.executor = executor or ModuleExecutor(
            registry=self.registry, timeout_seconds=self.config.module_timeout_seconds
        )
        self.reconciler = reconciler or FindingReconciler(ledger_repo, clock=clock)
        self.credential_provider = credential_provider
        self.metrics_factory = metrics_factory
        self.audit_runner = audit_runner
        self._clock = clock

    @classmethod
    def create(cls, limiter=None, app_config=None) -> "AssessmentOrchestrator":
        """
        Build an orchestrator from configuration.

        Args:
            limiter: Process-wide RateLimiter shared by metrics API clients
            app_config: AppConfig (defaults to get_config())
        """
        from infrastructure import RepositoryFactory, AuditRunnerClient, MetricsClientFactory
        from infrastructure import TenantCredentialProvider

        app_config = app_config or get_config()
        repos = RepositoryFactory.create_repositories(app_config)
        queue_repo = RepositoryFactory.create_queue_repository(app_config)
        vault = RepositoryFactory.create_vault_repository()

        return cls(
            assessment_repo=repos['assessment_repo'],
            ledger_repo=repos['ledger_repo'],
            portal_repo=repos['portal_repo'],
            queue_repo=queue_repo,
            config=app_config.assessment,
            queue_name=app_config.queues.assessment_jobs_queue,
            credential_provider=TenantCredentialProvider(vault) if vault else None,
            metrics_factory=MetricsClientFactory(limiter, app_config.metrics_api, vault) if limiter else None,
            audit_runner=AuditRunnerClient(app_config.audit_runner),
        )

    # ========================================================================
    # START
    # ========================================================================

    def start(
        self,
        customer_id: str,
        connection_id: str,
        module_codes: Sequence[str],
        trigger_type: Any = TriggerType.MANUAL,
        started_by: Optional[str] = None
    ) -> AssessmentJob:
        """
        Validate and queue a new assessment.

        Raises:
            AssessmentValidationError: Nothing was created
        """
        codes = normalize_module_codes(module_codes)
        if not codes:
            raise AssessmentValidationError("At least one module code is required")

        unknown = [code for code in codes if code not in self.registry]
        if unknown:
            raise AssessmentValidationError(f"Unknown module codes: {', '.join(unknown)}")

        raw_trigger = getattr(trigger_type, 'value', trigger_type) or TriggerType.MANUAL.value
        try:
            trigger = TriggerType(str(raw_trigger).strip().lower())
        except ValueError:
            raise AssessmentValidationError(
                f"Invalid trigger type '{trigger_type}'. Valid: {[t.value for t in TriggerType]}"
            ) from None

        if not customer_id:
            raise AssessmentValidationError("customer_id is required")

        connection = self.portal_repo.get_connection(connection_id) if connection_id else None
        if connection is None:
            raise AssessmentValidationError(f"Connection '{connection_id}' not found")
        if connection.customer_id != customer_id:
            raise AssessmentValidationError(
                f"Connection '{connection_id}' does not belong to customer '{customer_id}'"
            )
        if not connection.is_active:
            raise AssessmentValidationError(f"Connection '{connection_id}' is not active")

        job = AssessmentJob(
            customer_id=customer_id,
            connection_id=connection_id,
            module_codes=codes,
            trigger_type=trigger,
            started_by=started_by,
            created_at=self._clock(),
        )
        module_results = [
            ModuleResult(job_id=job.job_id, module_code=code, sequence=index)
            for index, code in enumerate(codes)
        ]
        self.assessment_repo.create_job(job, module_results)
        logger.info(
            f"📝 [ORCHESTRATOR] Job {job.job_id} queued: customer={customer_id}, "
            f"connection={connection_id}, modules={codes}, trigger={trigger.value}"
        )

        self.enqueue(job, QueueReason.START)
        return job

    def enqueue(self, job: AssessmentJob, reason: QueueReason) -> Optional[str]:
        """
        Send the job's work item.

        A send failure is logged, not raised: the job stays in the database
        and the watchdog re-enqueues it. A successful send stamps
        last_enqueued_at, which the watchdog's queued timeout counts from.
        """
        message = AssessmentQueueMessage(job_id=job.job_id, customer_id=job.customer_id, reason=reason)
        try:
            message_id = self.queue_repo.send_message(self.queue_name, message)
        except ServiceBusError as e:
            logger.error(f"❌ [ORCHESTRATOR] Enqueue failed for {job.job_id} ({reason.value}): {e}")
            return None
        self.assessment_repo.update_job(job.job_id, JobUpdateModel(last_enqueued_at=self._clock()))
        logger.info(f"📤 [ORCHESTRATOR] Job {job.job_id} enqueued ({reason.value}) message_id={message_id}")
        return message_id

    # ========================================================================
    # RUN
    # ========================================================================

    def run(self, job_id: str, worker_id: Optional[str] = None) -> Optional[AssessmentJob]:
        """
        Claim and execute a job.

        Returns the job after the run, or None when the claim was refused
        (terminal job, or another worker holds a fresh claim).
        """
        worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        now = self._clock()
        stale_before = now - timedelta(minutes=self.config.stale_threshold_minutes)

        job = self.assessment_repo.claim_job(job_id, worker_id, stale_before, now)
        if job is None:
            logger.info(f"⏭️ [ORCHESTRATOR] Job {job_id} not claimed by {worker_id}; nothing to do")
            return None

        results = self.assessment_repo.get_module_results(job_id)
        remaining = [r for r in results if not is_module_terminal(r.status)]
        logger.info(
            f"🚀 [ORCHESTRATOR] Job {job_id} claimed by {worker_id}: "
            f"{len(remaining)}/{len(results)} modules to run"
        )

        if remaining:
            connection = self.portal_repo.get_connection(job.connection_id)
            if connection is None:
                self.fail_remaining_modules(job_id, f"Connection '{job.connection_id}' no longer exists")
            else:
                context = ModuleContext(
                    job=job,
                    connection=connection,
                    credential_provider=self.credential_provider,
                    metrics_factory=self.metrics_factory,
                    audit_runner=self.audit_runner,
                )
                ticker = _HeartbeatTicker(
                    lambda: self._heartbeat(job_id),
                    self.config.heartbeat_interval_seconds,
                    name=f"heartbeat-{job_id[:8]}",
                )
                with ticker:
                    self._execute_modules(job, remaining, context)

        try:
            return self.finalize(job_id)
        except ReconciliationError as e:
            logger.error(f"❌ [ORCHESTRATOR] Job {job_id} left running for the watchdog: {e}")
            return self.assessment_repo.get_job(job_id)
        except InvalidJobStateError as e:
            logger.warning(f"⚠️ [ORCHESTRATOR] Job {job_id} not finalized: {e}")
            return self.assessment_repo.get_job(job_id)

    def _execute_modules(self, job: AssessmentJob, remaining: List[ModuleResult],
                         context: ModuleContext) -> None:
        with ThreadPoolExecutor(
            max_workers=self.config.module_concurrency,
            thread_name_prefix=f"job-{job.job_id[:8]}"
        ) as pool:
            futures = {
                pool.submit(self._run_module, job, result, context): result.module_code
                for result in remaining
            }
            for future in as_completed(futures):
                code = futures[future]
                try:
                    future.result()
                except Exception as e:
                    logger.error(
                        f"💥 [ORCHESTRATOR] Module {code} bookkeeping failed for {job.job_id}: {e}"
                    )
                    logger.debug(traceback.format_exc())

    def _run_module(self, job: AssessmentJob, result: ModuleResult, context: ModuleContext) -> None:
        job_id = job.job_id
        code = result.module_code

        if self._cancel_requested(job_id):
            target = ModuleStatus.SKIPPED if result.status == ModuleStatus.PENDING else ModuleStatus.FAILED
            self.assessment_repo.update_module_result(job_id, code, ModuleResultUpdateModel(
                status=target,
                error_message="Cancelled before the module started",
                completed_at=self._clock(),
            ))
            self._heartbeat(job_id)
            logger.info(f"⏹️ [ORCHESTRATOR] {code} {target.value} (cancellation requested) for {job_id}")
            return

        module_logger = LoggerFactory.create_with_context(
            ComponentType.SERVICE, "AssessmentOrchestrator",
            assessment_id=job_id, customer_id=job.customer_id, module_code=code,
        )
        self.assessment_repo.update_module_result(job_id, code, ModuleResultUpdateModel(
            status=ModuleStatus.RUNNING,
            started_at=self._clock(),
        ))
        self._heartbeat(job_id)
        module_logger.info(f"▶️ [ORCHESTRATOR] {code} started for {job_id}")

        outcome = self.executor.execute(job, code, context)
        raw_findings = [to_raw_finding(job_id, code, finding) for finding in outcome.findings]

        saved = self.assessment_repo.save_module_outcome(
            job_id,
            code,
            ModuleResultUpdateModel(
                status=ModuleStatus.COMPLETED if outcome.succeeded else ModuleStatus.FAILED,
                findings_count=len(raw_findings),
                error_message=outcome.error,
                duration_ms=outcome.duration_ms,
                completed_at=self._clock(),
            ),
            raw_findings,
        )
        if not saved:
            module_logger.warning(f"⚠️ [ORCHESTRATOR] Outcome of {code} for {job_id} was not recorded")
        else:
            module_logger.info(
                f"🏁 [ORCHESTRATOR] {code} {'completed' if outcome.succeeded else 'failed'} for {job_id}: "
                f"{len(raw_findings)} findings in {outcome.duration_ms}ms"
            )
        self._heartbeat(job_id)

    def _cancel_requested(self, job_id: str) -> bool:
        current = self.assessment_repo.get_job(job_id)
        return bool(current and current.cancel_requested)

    def _heartbeat(self, job_id: str) -> bool:
        return self.assessment_repo.record_progress(job_id, self._clock())

    def fail_remaining_modules(self, job_id: str, message: str) -> int:
        """Mark every non-terminal module FAILED; returns how many changed."""
        changed = 0
        for result in self.assessment_repo.get_module_results(job_id):
            if is_module_terminal(result.status):
                continue
            self.assessment_repo.update_module_result(job_id, result.module_code, ModuleResultUpdateModel(
                status=ModuleStatus.FAILED,
                error_message=message,
                completed_at=self._clock(),
            ))
            changed += 1
        if changed:
            logger.warning(f"⚠️ [ORCHESTRATOR] Failed {changed} remaining modules of {job_id}: {message}")
        return changed

    # ========================================================================
    # FINALIZE
    # ========================================================================

    def finalize(
        self,
        job_id: str,
        force_status: Optional[JobStatus] = None,
        error_details: Optional[str] = None
    ) -> AssessmentJob:
        """
        Reconcile and complete a job whose modules are all terminal.

        Reconciliation commits before the job is marked terminal, so a
        failure here leaves the job RUNNING and finalize can be retried.

        Raises:
            ResourceNotFoundError: Unknown job
            InvalidJobStateError: Some module is still active
            ReconciliationError: Ledger transaction rolled back
        """
        job = self.require_job(job_id)
        if is_job_terminal(job.status):
            return job

        results = self.assessment_repo.get_module_results(job_id)
        if not all_modules_terminal(results):
            raise InvalidJobStateError(
                f"Job {job_id} still has active modules", current_status=job.status.value
            )

        completed = completed_module_codes(results)
        findings = self.assessment_repo.list_raw_findings(job_id)
        delta = self.reconciler.reconcile(job.customer_id, job_id, completed, findings)

        counts = count_by_severity(findings)
        status = force_status or (JobStatus.COMPLETED if completed else JobStatus.FAILED)
        if status == JobStatus.FAILED and error_details is None:
            error_details = self._failure_summary(job, results)

        updates = JobUpdateModel(
            completed_at=self._clock(),
            findings_total=counts["total"],
            findings_high=counts["high"],
            findings_medium=counts["medium"],
            findings_low=counts["low"],
            score=calculate_health_score(counts["high"], counts["medium"], counts["low"]) if completed else None,
            is_stuck=False,
            stuck_since=None,
            error_details=error_details,
        )
        if not self.assessment_repo.finish_job(job_id, status, updates):
            logger.warning(f"⚠️ [ORCHESTRATOR] Job {job_id} was finished concurrently")
            return self.require_job(job_id)

        logger.info(
            f"🏁 [ORCHESTRATOR] Job {job_id} {status.value}: {len(completed)}/{len(results)} modules completed, "
            f"findings={counts['total']} (new={delta.new}, recurring={delta.recurring}, resolved={delta.resolved})"
        )
        return self.require_job(job_id)

    @staticmethod
    def _failure_summary(job: AssessmentJob, results: Sequence[ModuleResult]) -> str:
        if job.cancel_requested:
            return "Cancelled before any module completed"
        failures = [
            f"{r.module_code}: {r.error_message or r.status.value}"
            for r in results if r.status != ModuleStatus.COMPLETED
        ]
        return "No module completed. " + "; ".join(failures)

    # ========================================================================
    # STATUS / CONTROL
    # ========================================================================

    def get_status(self, job_id: str) -> AssessmentStatusView:
        job = self.require_job(job_id)
        results = self.assessment_repo.get_module_results(job_id)
        is_stale = job.status == JobStatus.RUNNING and is_heartbeat_stale(
            job.last_progress_at, self._clock(), self.config.stale_threshold_minutes
        )
        return AssessmentStatusView(
            job_id=job.job_id,
            customer_id=job.customer_id,
            status=job.status,
            progress_percent=calculate_progress_percent(results),
            per_module_status=[
                ModuleStatusView(
                    module_code=r.module_code,
                    status=r.status,
                    findings_count=r.findings_count,
                    error_message=r.error_message,
                    duration_ms=r.duration_ms,
                )
                for r in results
            ],
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            last_progress_at=job.last_progress_at,
            is_stale=is_stale,
            is_stuck=job.is_stuck,
            cancel_requested=job.cancel_requested,
            findings_total=job.findings_total,
            findings_new=job.findings_new,
            findings_recurring=job.findings_recurring,
            findings_resolved=job.findings_resolved,
            score=job.score,
            error_details=job.error_details,
        )

    def request_cancel(self, job_id: str) -> AssessmentJob:
        """
        Ask a job to stop at the next module boundary.

        Raises:
            ResourceNotFoundError: Unknown job
            InvalidJobStateError: Job already terminal
        """
        job = self.require_job(job_id)
        if is_job_terminal(job.status):
            raise InvalidJobStateError(
                f"Job {job_id} is already {job.status.value}", current_status=job.status.value
            )
        if not job.cancel_requested:
            self.assessment_repo.update_job(job_id, JobUpdateModel(cancel_requested=True))
            logger.info(f"⏹️ [ORCHESTRATOR] Cancellation requested for {job_id}")
        return self.require_job(job_id)

    def force_restart(self, job_id: str) -> AssessmentJob:
        """
        Re-enqueue a job the watchdog flagged as stuck.

        Raises:
            ResourceNotFoundError: Unknown job
            InvalidJobStateError: Job is terminal or not flagged stuck
        """
        job = self.require_job(job_id)
        if is_job_terminal(job.status):
            raise InvalidJobStateError(
                f"Job {job_id} is already {job.status.value}", current_status=job.status.value
            )
        if not job.is_stuck:
            raise InvalidJobStateError(
                f"Job {job_id} is not flagged as stuck; force restart refused",
                current_status=job.status.value
            )

        self.assessment_repo.update_job(job_id, JobUpdateModel(redrive_count=job.redrive_count + 1))
        job = self.require_job(job_id)
        self.enqueue(job, QueueReason.FORCE_RESTART)
        logger.warning(f"🔁 [ORCHESTRATOR] Force restart of {job_id} (redrive {job.redrive_count})")
        return job

    def require_job(self, job_id: str) -> AssessmentJob:
        job = self.assessment_repo.get_job(job_id)
        if job is None:
            raise ResourceNotFoundError(f"Assessment {job_id} not found")
        return job


__all__ = ['AssessmentOrchestrator']
