# ============================================================================
# SCHEDULE SERVICE
# ============================================================================
# STATUS: Service layer - scheduled assessments
# PURPOSE: Start one scheduled assessment per connection with modules due
#          under the customer's tier frequencies
# EXPORTS: ScheduleService, ScheduleRunResult
# DEPENDENCIES: services.assessment_orchestrator, core.logic.scheduling
# ============================================================================
"""
Scheduled Assessment Planner.

Runs daily from the timer trigger. A connection that already has a queued
or running job is skipped so that a slow assessment is not doubled up.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core.logic import plan_due_modules
from core.models import JobStatus, TriggerType
from exceptions import AssessmentValidationError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "ScheduleService")


@dataclass
class ScheduleRunResult:
    """Outcome of one planning pass."""
    success: bool = True
    connections_due: int = 0
    started_jobs: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "connections_due": self.connections_due,
            "started_jobs": self.started_jobs,
            "skipped": self.skipped,
            "error": self.error,
            "summary": {
                "started": len(self.started_jobs),
                "skipped": len(self.skipped),
            },
        }


class ScheduleService:
    """Starts scheduled assessments for due tier modules."""

    def __init__(self, orchestrator, portal_repo,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.orchestrator = orchestrator
        self.portal_repo = portal_repo
        self._clock = clock

    @classmethod
    def create(cls, limiter=None) -> "ScheduleService":
        from .assessment_orchestrator import AssessmentOrchestrator

        orchestrator = AssessmentOrchestrator.create(limiter=limiter)
        return cls(orchestrator, orchestrator.portal_repo)

    def run_due_assessments(self) -> ScheduleRunResult:
        result = ScheduleRunResult()
        plan = plan_due_modules(self.portal_repo.list_schedule_targets(), self._clock())
        result.connections_due = len(plan)
        logger.info(f"📅 [SCHEDULER] {len(plan)} connections have due modules")

        for (customer_id, connection_id), module_codes in plan.items():
            if self._has_active_job(customer_id, connection_id):
                result.skipped.append({
                    "customer_id": customer_id,
                    "connection_id": connection_id,
                    "reason": "assessment already queued or running",
                })
                continue
            try:
                job = self.orchestrator.start(
                    customer_id,
                    connection_id,
                    module_codes,
                    trigger_type=TriggerType.SCHEDULED,
                    started_by="scheduler",
                )
            except AssessmentValidationError as e:
                logger.warning(f"⚠️ [SCHEDULER] Skipped {customer_id}/{connection_id}: {e}")
                result.skipped.append({
                    "customer_id": customer_id,
                    "connection_id": connection_id,
                    "reason": str(e),
                })
                continue
            result.started_jobs.append({
                "job_id": job.job_id,
                "customer_id": customer_id,
                "connection_id": connection_id,
                "module_codes": job.module_codes,
            })

        logger.info(
            f"📅 [SCHEDULER] Started {len(result.started_jobs)} assessments, skipped {len(result.skipped)}"
        )
        return result

    def _has_active_job(self, customer_id: str, connection_id: str) -> bool:
        repo = self.orchestrator.assessment_repo
        for status in (JobStatus.QUEUED, JobStatus.RUNNING):
            for job in repo.list_jobs(status_filter=status, customer_id=customer_id):
                if job.connection_id == connection_id:
                    return True
        return False


__all__ = ['ScheduleService', 'ScheduleRunResult']
