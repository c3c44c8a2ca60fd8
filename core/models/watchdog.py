# ============================================================================
# WATCHDOG AUDIT MODELS
# ============================================================================
# STATUS: Core - recovery sweep audit trail
# PURPOSE: Track watchdog sweeps over stalled and orphaned assessment jobs
# ============================================================================
"""
Watchdog Audit Models.

Pydantic models for the watchdog_runs audit table. Every sweep, timer or
manual, writes one record with the actions it took.

Exports:
    WatchdogRun: Audit record for one sweep
    WatchdogRunStatus: Run status enumeration
    WatchdogAction: Kinds of recovery action
"""

from datetime import datetime, timezone
from typing import Dict, Any, Optional, List
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, field_serializer
import uuid


class WatchdogRunStatus(str, Enum):
    """Status of a watchdog run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WatchdogAction(str, Enum):
    """Recovery actions recorded in actions_taken."""
    FLAGGED_STUCK = "flagged_stuck"
    REDRIVEN = "redriven"
    FORCE_COMPLETED = "force_completed"
    FAILED_JOB = "failed_job"
    REQUEUED = "requeued"


class WatchdogRun(BaseModel):
    """
    Database representation of one watchdog sweep.

    Fields:
    - run_id: Unique identifier (UUID)
    - trigger: "timer" or "manual"
    - items_scanned: Jobs examined
    - items_fixed: Jobs acted on
    - actions_taken: One dict per action (job_id, action, detail)
    """

    model_config = ConfigDict()

    @field_serializer('started_at', 'completed_at')
    @classmethod
    def serialize_datetime(cls, v: datetime) -> Optional[str]:
        return v.isoformat() if v else None

    run_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique run identifier (UUID)"
    )
    trigger: str = Field(default="timer", description="timer or manual")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = Field(default=None)
    duration_ms: Optional[int] = Field(default=None)
    status: WatchdogRunStatus = Field(default=WatchdogRunStatus.RUNNING)
    items_scanned: int = Field(default=0, ge=0)
    items_fixed: int = Field(default=0, ge=0)
    actions_taken: List[Dict[str, Any]] = Field(default_factory=list)
    error_details: Optional[str] = Field(default=None)


__all__ = [
    'WatchdogRun',
    'WatchdogRunStatus',
    'WatchdogAction',
]
