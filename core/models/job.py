# ============================================================================
# CORE MODELS - ASSESSMENT JOB
# ============================================================================
# STATUS: Core data models - assessment job database representation
# PURPOSE: Pydantic models for assessment jobs and their per-module results
# EXPORTS: AssessmentJob, ModuleResult
# DEPENDENCIES: pydantic
# ============================================================================

"""
Assessment Job Models - Persistence Boundary

AssessmentJob is one run of a batch of audit modules against a customer's
cloud tenant. ModuleResult records the outcome of one module within a job.

Lifecycle:
    created QUEUED by the orchestrator's start operation
    claimed RUNNING by a queue worker (last_progress_at set)
    terminal COMPLETED / FAILED once every module is terminal and the
    findings ledger has been reconciled

last_progress_at is the heartbeat: it is bumped on every module state
transition while the job is running, and the watchdog judges staleness by
it rather than by wall-clock time since start.

Exports:
    AssessmentJob: Job record
    ModuleResult: Per-module outcome
"""

from datetime import datetime, timezone
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field, ConfigDict, field_validator, field_serializer

from .enums import JobStatus, ModuleStatus, TriggerType


def normalize_module_codes(codes) -> List[str]:
    """Upper-case, strip and de-duplicate module codes, keeping first-seen order."""
    seen = set()
    normalized = []
    for code in codes or []:
        if code is None:
            continue
        value = str(code).strip().upper()
        if value and value not in seen:
            seen.add(value)
            normalized.append(value)
    return normalized


class AssessmentJob(BaseModel):
    """
    Database representation of an assessment job.

    Counters:
    - findings_total/high/medium/low and score: aggregates over this run's
      raw findings, written when the job reaches a terminal state
    - findings_new/recurring/resolved: ledger delta, written by the
      reconciler in the same transaction that sets reconciled_at

    Recovery fields:
    - is_stuck / stuck_since: set by the watchdog, cleared on next heartbeat
    - cancel_requested: honoured between modules only
    - redrive_count: number of times the job was re-enqueued after stalling
    - last_enqueued_at: last successful send of the job's queue message
    - worker_id: worker currently holding the claim
    """

    model_config = ConfigDict(validate_assignment=True)

    @field_serializer(
        'created_at', 'started_at', 'completed_at', 'last_progress_at',
        'last_enqueued_at', 'reconciled_at', 'stuck_since'
    )
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    # Identity
    job_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique assessment identifier (UUID)"
    )
    customer_id: str = Field(..., min_length=1, description="Customer owning the connection")
    connection_id: str = Field(..., min_length=1, description="Cloud tenant connection audited by this job")

    # State
    status: JobStatus = Field(default=JobStatus.QUEUED, description="Current job status")
    module_codes: List[str] = Field(..., min_length=1, description="Requested modules in execution order")
    trigger_type: TriggerType = Field(default=TriggerType.MANUAL, description="What started the job")
    started_by: Optional[str] = Field(default=None, description="User or process that started the job")

    # Timing
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = Field(default=None, description="First claim by a worker")
    completed_at: Optional[datetime] = Field(default=None)
    last_progress_at: Optional[datetime] = Field(default=None, description="Heartbeat")
    last_enqueued_at: Optional[datetime] = Field(
        default=None,
        description="Last successful queue send; the queued timeout is measured from it"
    )

    # Aggregates
    findings_total: int = Field(default=0, ge=0)
    findings_high: int = Field(default=0, ge=0)
    findings_medium: int = Field(default=0, ge=0)
    findings_low: int = Field(default=0, ge=0)
    score: Optional[int] = Field(default=None, ge=0, le=100)

    # Ledger delta
    findings_new: int = Field(default=0, ge=0)
    findings_recurring: int = Field(default=0, ge=0)
    findings_resolved: int = Field(default=0, ge=0)
    reconciled_at: Optional[datetime] = Field(
        default=None,
        description="Set once the ledger delta committed; guards against double reconciliation"
    )

    # Recovery
    is_stuck: bool = Field(default=False)
    stuck_since: Optional[datetime] = Field(default=None)
    cancel_requested: bool = Field(default=False)
    redrive_count: int = Field(default=0, ge=0)
    worker_id: Optional[str] = Field(default=None)
    error_details: Optional[str] = Field(default=None)

    @field_validator('module_codes', mode='before')
    @classmethod
    def normalize_codes(cls, v):
        return normalize_module_codes(v)

    @property
    def is_reconciled(self) -> bool:
        return self.reconciled_at is not None


class ModuleResult(BaseModel):
    """
    Outcome of one module within an assessment job.

    A module's failure never changes the status of its siblings.
    """

    model_config = ConfigDict(validate_assignment=True)

    @field_serializer('started_at', 'completed_at')
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    job_id: str = Field(..., description="Owning assessment job")
    module_code: str = Field(..., min_length=1, description="Module code (upper-case)")
    sequence: int = Field(default=0, ge=0, description="Position in the requested module order")
    status: ModuleStatus = Field(default=ModuleStatus.PENDING)
    findings_count: int = Field(default=0, ge=0)
    error_message: Optional[str] = Field(default=None)
    duration_ms: Optional[int] = Field(default=None, ge=0)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    @field_validator('module_code', mode='before')
    @classmethod
    def upper_code(cls, v):
        return str(v).strip().upper() if v is not None else v


__all__ = [
    'AssessmentJob',
    'ModuleResult',
    'normalize_module_codes',
]
