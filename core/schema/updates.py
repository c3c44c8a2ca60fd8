# ============================================================================
# UPDATE MODEL SCHEMAS
# ============================================================================
# STATUS: Core schema - repository update contracts
# PURPOSE: Strongly-typed Pydantic models for repository update operations
# EXPORTS: JobUpdateModel, ModuleResultUpdateModel
# ENTRY_POINTS: from core.schema.updates import JobUpdateModel
# ============================================================================

"""
Repository Update Models - Contract Enforcement

Strongly-typed models for partial updates, replacing Dict[str, Any] at
repository boundaries. Only fields explicitly set are written.

Exports:
    JobUpdateModel
    ModuleResultUpdateModel
"""

from typing import Dict, Any, Optional
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict

from ..models import JobStatus, ModuleStatus


class JobUpdateModel(BaseModel):
    """
    Strongly typed assessment job update contract.

    Pydantic converts enums to their string values (use_enum_values).
    """

    model_config = ConfigDict(
        use_enum_values=True,
        validate_assignment=True,
        extra='forbid'
    )

    status: Optional[JobStatus] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_progress_at: Optional[datetime] = None
    last_enqueued_at: Optional[datetime] = None
    findings_total: Optional[int] = Field(None, ge=0)
    findings_high: Optional[int] = Field(None, ge=0)
    findings_medium: Optional[int] = Field(None, ge=0)
    findings_low: Optional[int] = Field(None, ge=0)
    score: Optional[int] = Field(None, ge=0, le=100)
    is_stuck: Optional[bool] = None
    stuck_since: Optional[datetime] = None
    cancel_requested: Optional[bool] = None
    redrive_count: Optional[int] = Field(None, ge=0)
    worker_id: Optional[str] = None
    error_details: Optional[str] = None

    def to_dict(self, exclude_unset: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for SQL operations."""
        return self.model_dump(exclude_unset=exclude_unset, mode='json')


class ModuleResultUpdateModel(BaseModel):
    """
    Strongly typed module result update contract.
    """

    model_config = ConfigDict(
        use_enum_values=True,
        validate_assignment=True,
        extra='forbid'
    )

    status: Optional[ModuleStatus] = None
    findings_count: Optional[int] = Field(None, ge=0)
    error_message: Optional[str] = None
    duration_ms: Optional[int] = Field(None, ge=0)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self, exclude_unset: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for SQL operations."""
        return self.model_dump(exclude_unset=exclude_unset, mode='json')


__all__ = [
    'JobUpdateModel',
    'ModuleResultUpdateModel',
]
