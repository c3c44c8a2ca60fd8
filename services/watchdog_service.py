# ============================================================================
# WATCHDOG SERVICE
# ============================================================================
# STATUS: Service layer - recovery sweep for stalled and orphaned jobs
# PURPOSE: Detect running jobs without a recent heartbeat and queued jobs
#          whose message was lost, and recover them
# EXPORTS: WatchdogService, WatchdogConfig, WatchdogRunResult
# DEPENDENCIES: services.assessment_orchestrator, infrastructure repositories
# ============================================================================
"""
Watchdog Service.

Runs every 5 minutes from the timer trigger (and on demand over HTTP).

Running jobs whose last_progress_at is older than the stale threshold:
    - every module terminal      -> force-complete through finalize()
    - redrives left              -> flag is_stuck, re-enqueue, redrive_count + 1
    - redrives exhausted         -> fail remaining modules and the job

Queued jobs older than the queued timeout (lost message):
    - redrives left              -> re-enqueue, redrive_count + 1
    - redrives exhausted         -> fail the job

Every sweep writes a watchdog_runs audit record at start and updates it at
the end, so a crashed sweep still leaves evidence.
"""

import os
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from config.defaults import WatchdogDefaults
from core.logic import all_modules_terminal
from core.models import (
    AssessmentJob,
    JobStatus,
    WatchdogAction,
    WatchdogRun,
    WatchdogRunStatus,
)
from core.schema import JobUpdateModel, QueueReason
from exceptions import InvalidJobStateError, ReconciliationError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "WatchdogService")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class WatchdogConfig:
    """Configuration for watchdog sweeps."""
    enabled: bool = WatchdogDefaults.ENABLED
    stale_threshold_minutes: int = WatchdogDefaults.STALE_THRESHOLD_MINUTES
    queued_timeout_minutes: int = WatchdogDefaults.QUEUED_TIMEOUT_MINUTES
    max_redrives: int = WatchdogDefaults.MAX_REDRIVES
    auto_redrive: bool = WatchdogDefaults.AUTO_REDRIVE
    batch_size: int = 100

    @classmethod
    def from_environment(cls) -> 'WatchdogConfig':
        """Load configuration from environment variables."""
        return cls(
            enabled=os.environ.get("WATCHDOG_ENABLED", "true").lower() == "true",
            stale_threshold_minutes=int(os.environ.get(
                "WATCHDOG_STALE_THRESHOLD_MINUTES", str(WatchdogDefaults.STALE_THRESHOLD_MINUTES)
            )),
            queued_timeout_minutes=int(os.environ.get(
                "WATCHDOG_QUEUED_TIMEOUT_MINUTES", str(WatchdogDefaults.QUEUED_TIMEOUT_MINUTES)
            )),
            max_redrives=int(os.environ.get("WATCHDOG_MAX_REDRIVES", str(WatchdogDefaults.MAX_REDRIVES))),
            auto_redrive=os.environ.get("WATCHDOG_AUTO_REDRIVE", "true").lower() == "true",
            batch_size=int(os.environ.get("WATCHDOG_BATCH_SIZE", "100")),
        )


# ============================================================================
# RESULT
# ============================================================================

@dataclass
class WatchdogRunResult:
    """Result of one watchdog sweep."""
    trigger: str
    success: bool = False
    items_scanned: int = 0
    items_fixed: int = 0
    actions_taken: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    run_id: Optional[str] = None

    def complete(self, success: bool = True, error: Optional[str] = None):
        """Mark run as complete."""
        self.completed_at = _utcnow()
        self.success = success
        self.error = error

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at and self.started_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return None

    def record(self, job: AssessmentJob, action: WatchdogAction, detail: str, fixed: bool = True):
        self.actions_taken.append({
            "job_id": job.job_id,
            "customer_id": job.customer_id,
            "action": action.value,
            "detail": detail,
            "redrive_count": job.redrive_count,
        })
        if fixed:
            self.items_fixed += 1

    def to_model(self) -> WatchdogRun:
        if self.completed_at is None:
            status = WatchdogRunStatus.RUNNING
        else:
            status = WatchdogRunStatus.COMPLETED if self.success else WatchdogRunStatus.FAILED
        return WatchdogRun(
            run_id=self.run_id,
            trigger=self.trigger,
            started_at=self.started_at,
            completed_at=self.completed_at,
            duration_ms=self.duration_ms,
            status=status,
            items_scanned=self.items_scanned,
            items_fixed=self.items_fixed,
            actions_taken=self.actions_taken,
            error_details=self.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger,
            "success": self.success,
            "items_scanned": self.items_scanned,
            "items_fixed": self.items_fixed,
            "actions_taken": self.actions_taken,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


# ============================================================================
# SERVICE
# ============================================================================

class WatchdogService:
    """
    Recovery sweeps over assessment jobs.

    Usage:
        service = WatchdogService(orchestrator, watchdog_repo)
        result = service.run_sweep()
    """

    def __init__(
        self,
        orchestrator,
        watchdog_repo,
        config: Optional[WatchdogConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.orchestrator = orchestrator
        self.assessment_repo = orchestrator.assessment_repo
        self.watchdog_repo = watchdog_repo
        self.config = config or WatchdogConfig.from_environment()
        self._clock = clock
        logger.info(
            f"WatchdogService initialized: enabled={self.config.enabled}, "
            f"stale={self.config.stale_threshold_minutes}min, "
            f"queued_timeout={self.config.queued_timeout_minutes}min, "
            f"max_redrives={self.config.max_redrives}"
        )

    @classmethod
    def create(cls, limiter=None) -> 'WatchdogService':
        from infrastructure import RepositoryFactory
        from .assessment_orchestrator import AssessmentOrchestrator

        repos = RepositoryFactory.create_repositories()
        return cls(AssessmentOrchestrator.create(limiter=limiter), repos['watchdog_repo'])

    def run_sweep(self, trigger: str = "timer") -> WatchdogRunResult:
        """
        Scan stale running and queued jobs and recover them.

        Returns:
            WatchdogRunResult with statistics and actions taken
        """
        result = WatchdogRunResult(trigger=trigger)
        result.run_id = self._start_run(result)

        if not self.config.enabled:
            logger.info("[WATCHDOG] Disabled via configuration - skipping sweep")
            result.complete(success=True)
            self._complete_run(result)
            return result

        try:
            now = self._clock()
            stale_before = now - timedelta(minutes=self.config.stale_threshold_minutes)

            stale_jobs = self.assessment_repo.list_stale_running_jobs(
                stale_before, limit=self.config.batch_size
            )
            queued_jobs = self.assessment_repo.list_stale_queued_jobs(
                now - timedelta(minutes=self.config.queued_timeout_minutes),
                limit=self.config.batch_size
            )
            result.items_scanned = len(stale_jobs) + len(queued_jobs)

            if not stale_jobs and not queued_jobs:
                logger.info("[WATCHDOG] No stale jobs found - system healthy")
            else:
                logger.warning(
                    f"[WATCHDOG] Found {len(stale_jobs)} stale running and "
                    f"{len(queued_jobs)} orphaned queued jobs"
                )

            for job in stale_jobs:
                self._recover_running_job(job, now, stale_before, result)
            for job in queued_jobs:
                self._recover_queued_job(job, now, result)

            result.complete(success=True)

        except Exception as e:
            logger.error(f"[WATCHDOG] Sweep failed: {e}")
            logger.error(f"[WATCHDOG] Traceback: {traceback.format_exc()}")
            result.complete(success=False, error=str(e))

        self._complete_run(result)
        return result

    # ------------------------------------------------------------------
    # Running jobs
    # ------------------------------------------------------------------

    def _recover_running_job(self, job: AssessmentJob, now: datetime, stale_before: datetime,
                             result: WatchdogRunResult) -> None:
        minutes_stale = (
            round((now - job.last_progress_at).total_seconds() / 60, 1)
            if job.last_progress_at else None
        )
        logger.warning(
            f"[WATCHDOG] Stale job {job.job_id}: customer={job.customer_id}, "
            f"last_progress={minutes_stale}min ago, redrives={job.redrive_count}, stuck={job.is_stuck}"
        )

        results = self.assessment_repo.get_module_results(job.job_id)
        if all_modules_terminal(results):
            self._force_complete(job, result)
            return

        if job.is_stuck and job.stuck_since and job.stuck_since >= stale_before:
            logger.info(f"[WATCHDOG] Job {job.job_id} already redriven at {job.stuck_since.isoformat()}; waiting")
            return

        if job.redrive_count < self.config.max_redrives:
            self.assessment_repo.update_job(job.job_id, JobUpdateModel(
                is_stuck=True,
                stuck_since=now,
                redrive_count=job.redrive_count + 1 if self.config.auto_redrive else job.redrive_count,
            ))
            job = self.orchestrator.require_job(job.job_id)
            if not self.config.auto_redrive:
                result.record(job, WatchdogAction.FLAGGED_STUCK, f"no heartbeat for {minutes_stale}min")
                return
            self.orchestrator.enqueue(job, QueueReason.REDRIVE)
            result.record(
                job, WatchdogAction.REDRIVEN,
                f"no heartbeat for {minutes_stale}min; redrive {job.redrive_count}/{self.config.max_redrives}"
            )
            return

        message = (
            f"Watchdog: no progress for {minutes_stale} minutes after "
            f"{job.redrive_count} redrives"
        )
        self.orchestrator.fail_remaining_modules(job.job_id, message)
        try:
            self.orchestrator.finalize(job.job_id, force_status=JobStatus.FAILED, error_details=message)
        except (ReconciliationError, InvalidJobStateError) as e:
            logger.error(f"[WATCHDOG] Could not fail job {job.job_id}: {e}")
            result.record(job, WatchdogAction.FAILED_JOB, f"finalize failed: {e}", fixed=False)
            return
        result.record(job, WatchdogAction.FAILED_JOB, message)

    def _force_complete(self, job: AssessmentJob, result: WatchdogRunResult) -> None:
        try:
            finished = self.orchestrator.finalize(job.job_id)
        except (ReconciliationError, InvalidJobStateError) as e:
            logger.error(f"[WATCHDOG] Force-complete of {job.job_id} failed: {e}")
            result.record(job, WatchdogAction.FORCE_COMPLETED, f"finalize failed: {e}", fixed=False)
            return
        result.record(job, WatchdogAction.FORCE_COMPLETED, f"all modules terminal; job {finished.status.value}")

    # ------------------------------------------------------------------
    # Queued jobs
    # ------------------------------------------------------------------

    def _recover_queued_job(self, job: AssessmentJob, now: datetime, result: WatchdogRunResult) -> None:
        if job.redrive_count < self.config.max_redrives:
            self.assessment_repo.update_job(job.job_id, JobUpdateModel(redrive_count=job.redrive_count + 1))
            job = self.orchestrator.require_job(job.job_id)
            self.orchestrator.enqueue(job, QueueReason.REQUEUE)
            result.record(
                job, WatchdogAction.REQUEUED,
                f"queued since {job.created_at.isoformat()}; requeue {job.redrive_count}/{self.config.max_redrives}"
            )
            return

        message = f"Watchdog: never picked up after {job.redrive_count} requeues"
        self.orchestrator.fail_remaining_modules(job.job_id, message)
        self.assessment_repo.update_job(job.job_id, JobUpdateModel(
            status=JobStatus.FAILED,
            completed_at=now,
            error_details=message,
        ))
        result.record(job, WatchdogAction.FAILED_JOB, message)

    # ========================================================================
    # AUDIT LOGGING
    # ========================================================================

    def _start_run(self, result: WatchdogRunResult) -> Optional[str]:
        """
        Create audit record at START of the sweep.

        Returns:
            run_id or None if logging fails
        """
        try:
            run = WatchdogRun(trigger=result.trigger, started_at=result.started_at)
            run_id = self.watchdog_repo.log_watchdog_run(run)
            logger.info(f"[WATCHDOG] Created audit record: run_id={run_id}, trigger={result.trigger}")
            return run_id
        except Exception as e:
            logger.error(f"[WATCHDOG] Failed to create audit record (non-fatal): {e}")
            return None

    def _complete_run(self, result: WatchdogRunResult):
        """Update audit record at END of the sweep with results."""
        if not result.run_id:
            logger.warning("[WATCHDOG] No run_id - audit record wasn't created at start")
            result.run_id = self._start_run(result)
            if not result.run_id:
                return

        try:
            self.watchdog_repo.update_watchdog_run(result.to_model())
            logger.info(
                f"[WATCHDOG] Updated audit record: run_id={result.run_id}, "
                f"status={'completed' if result.success else 'failed'}, "
                f"scanned={result.items_scanned}, fixed={result.items_fixed}"
            )
        except Exception as e:
            logger.error(f"[WATCHDOG] Failed to update audit record (non-fatal): {e}")


__all__ = ['WatchdogService', 'WatchdogConfig', 'WatchdogRunResult']
