"""
Assessment Orchestrator Configuration.

Controls how a single assessment job is executed:
    - Bounded module parallelism inside one job
    - Per-module timeout
    - Heartbeat staleness threshold (shared with status polling)
    - Storage backend selection

Exports:
    AssessmentConfig: Pydantic orchestrator configuration model
"""

import os
from pydantic import BaseModel, Field, field_validator

from .defaults import AssessmentDefaults


class AssessmentConfig(BaseModel):
    """
    Orchestrator configuration.

    stale_threshold_minutes drives both GetStatus' is_stale flag and the
    claim rule that lets a re-delivered message take over a stalled job.
    """

    module_concurrency: int = Field(
        default=AssessmentDefaults.MODULE_CONCURRENCY,
        ge=1,
        le=32,
        description="Fixed worker pool size for modules within one job"
    )

    module_timeout_seconds: float = Field(
        default=AssessmentDefaults.MODULE_TIMEOUT_SECONDS,
        gt=0,
        description="Per-module timeout; a module exceeding it is recorded as failed"
    )

    stale_threshold_minutes: int = Field(
        default=AssessmentDefaults.STALE_THRESHOLD_MINUTES,
        ge=1,
        description="Minutes without a heartbeat before a running job counts as stalled"
    )

    heartbeat_interval_seconds: float = Field(
        default=AssessmentDefaults.HEARTBEAT_INTERVAL_SECONDS,
        gt=0,
        description="Heartbeat cadence while modules are running (keep well below the stale threshold)"
    )

    storage_backend: str = Field(
        default=AssessmentDefaults.STORAGE_BACKEND,
        description="Repository backend: postgres (production) or memory (local runs)"
    )

    @field_validator("storage_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in AssessmentDefaults.VALID_STORAGE_BACKENDS:
            raise ValueError(
                f"storage_backend must be one of {AssessmentDefaults.VALID_STORAGE_BACKENDS}, got '{v}'"
            )
        return v

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            module_concurrency=int(os.environ.get(
                "ASSESSMENT_MODULE_CONCURRENCY", str(AssessmentDefaults.MODULE_CONCURRENCY)
            )),
            module_timeout_seconds=float(os.environ.get(
                "ASSESSMENT_MODULE_TIMEOUT_SECONDS", str(AssessmentDefaults.MODULE_TIMEOUT_SECONDS)
            )),
            stale_threshold_minutes=int(os.environ.get(
                "ASSESSMENT_STALE_THRESHOLD_MINUTES", str(AssessmentDefaults.STALE_THRESHOLD_MINUTES)
            )),
            heartbeat_interval_seconds=float(os.environ.get(
                "ASSESSMENT_HEARTBEAT_SECONDS", str(AssessmentDefaults.HEARTBEAT_INTERVAL_SECONDS)
            )),
            storage_backend=os.environ.get("ASSESSMENT_STORAGE_BACKEND", AssessmentDefaults.STORAGE_BACKEND),
        )
