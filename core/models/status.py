"""
Assessment Status View Models.

Read-only projections returned to pollers and the findings surface.
Serialized with camelCase aliases for the HTTP surface.

Exports:
    ModuleStatusView
    AssessmentStatusView
    FindingView
    FindingChangesView
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from .enums import ChangeStatus, JobStatus, LedgerStatus, ModuleStatus, Severity


class ModuleStatusView(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    module_code: str
    status: ModuleStatus
    findings_count: int = 0
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None


class AssessmentStatusView(BaseModel):
    """
    Status of one assessment job.

    is_stale is derived at read time: the job is running and its heartbeat
    is older than the stale threshold. is_stuck is the watchdog's flag.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    @field_serializer('created_at', 'started_at', 'completed_at', 'last_progress_at')
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    job_id: str
    customer_id: str
    status: JobStatus
    progress_percent: int = Field(..., ge=0, le=100)
    per_module_status: List[ModuleStatusView] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_progress_at: Optional[datetime] = None
    is_stale: bool = False
    is_stuck: bool = False
    cancel_requested: bool = False
    findings_total: int = 0
    findings_new: int = 0
    findings_recurring: int = 0
    findings_resolved: int = 0
    score: Optional[int] = None
    error_details: Optional[str] = None

    def to_response(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)


class FindingView(BaseModel):
    """
    One ledger finding as shown to the portal.

    effort_hours, impact and owner come from the first matching remediation
    metadata rule and are None when no rule matched.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    @field_serializer('first_seen_at', 'last_seen_at', 'resolved_at')
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    fingerprint: str
    module_code: str
    severity: Severity
    category: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    resource_name: Optional[str] = None
    finding_text: str
    recommendation: Optional[str] = None
    status: Optional[LedgerStatus] = None
    change_status: Optional[ChangeStatus] = None
    occurrence_count: Optional[int] = None
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    effort_hours: Optional[float] = None
    impact: Optional[Severity] = None
    owner: Optional[str] = None
    metadata_rule_id: Optional[int] = None


class FindingChangesView(BaseModel):
    """New, recurring and resolved findings of the latest reconciled job."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_serializer('reconciled_at')
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    customer_id: str
    current_job_id: Optional[str] = None
    previous_job_id: Optional[str] = None
    reconciled_at: Optional[datetime] = None
    new: List[FindingView] = Field(default_factory=list)
    recurring: List[FindingView] = Field(default_factory=list)
    resolved: List[FindingView] = Field(default_factory=list)

    def to_response(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)


__all__ = ['ModuleStatusView', 'AssessmentStatusView', 'FindingView', 'FindingChangesView']
