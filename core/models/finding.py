# ============================================================================
# CORE MODELS - FINDINGS AND LEDGER
# ============================================================================
# STATUS: Core data models - findings produced per job and the customer ledger
# PURPOSE: Pydantic models for module output, raw findings, ledger entries
#          and the reconciliation delta
# EXPORTS: FindingInput, RawFinding, LedgerEntry, LedgerDelta
# DEPENDENCIES: pydantic
# ============================================================================

"""
Finding Models.

Three shapes of a finding:

    FindingInput   what an audit module yields (no identity yet)
    RawFinding     one finding recorded against one job and module, carrying
                   its fingerprint and, after reconciliation, its change status
    LedgerEntry    the customer's durable record for one fingerprint; exactly
                   one per (customer_id, fingerprint), never deleted

LedgerDelta summarises one reconciliation.

Exports:
    FindingInput
    RawFinding
    LedgerEntry
    LedgerDelta
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
import uuid

from pydantic import BaseModel, Field, ConfigDict, field_validator, field_serializer

from .enums import ChangeStatus, LedgerStatus, Severity


class FindingInput(BaseModel):
    """
    A finding as yielded by an audit module.

    Extra keys from external collectors are ignored.
    """

    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)

    severity: Severity = Field(default=Severity.INFO)
    category: Optional[str] = Field(default=None, description="Module-defined category, e.g. 'NSG Configuration'")
    resource_type: Optional[str] = Field(default=None)
    resource_id: Optional[str] = Field(default=None, description="Stable resource identifier in the tenant")
    resource_name: Optional[str] = Field(default=None)
    finding_text: str = Field(..., min_length=1)
    recommendation: Optional[str] = Field(default=None)

    @field_validator('severity', mode='before')
    @classmethod
    def parse_severity(cls, v):
        return Severity.parse(v)


class RawFinding(BaseModel):
    """
    One finding recorded for a job and module.

    Append-only history: rows are written when their module finishes and
    only change_status is set afterwards, by the reconciler.
    """

    model_config = ConfigDict(validate_assignment=True)

    @field_serializer('created_at')
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    finding_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    job_id: str = Field(...)
    module_code: str = Field(..., min_length=1)
    fingerprint: str = Field(..., min_length=64, max_length=64, description="SHA-256 hex digest")
    severity: Severity = Field(default=Severity.INFO)
    category: Optional[str] = Field(default=None)
    resource_type: Optional[str] = Field(default=None)
    resource_id: Optional[str] = Field(default=None)
    resource_name: Optional[str] = Field(default=None)
    finding_text: str = Field(...)
    recommendation: Optional[str] = Field(default=None)
    change_status: Optional[ChangeStatus] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator('severity', mode='before')
    @classmethod
    def parse_severity(cls, v):
        return Severity.parse(v)


class LedgerEntry(BaseModel):
    """
    Customer findings ledger entry.

    Key: (customer_id, fingerprint). occurrence_count is the number of
    assessments in which the fingerprint was seen.
    """

    model_config = ConfigDict(validate_assignment=True)

    @field_serializer('first_seen_at', 'last_seen_at', 'resolved_at')
    @classmethod
    def serialize_datetime(cls, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    customer_id: str = Field(...)
    fingerprint: str = Field(..., min_length=64, max_length=64)
    module_code: str = Field(...)
    severity: Severity = Field(default=Severity.INFO)
    category: Optional[str] = Field(default=None)
    resource_type: Optional[str] = Field(default=None)
    resource_id: Optional[str] = Field(default=None)
    resource_name: Optional[str] = Field(default=None)
    finding_text: str = Field(...)
    recommendation: Optional[str] = Field(default=None)
    status: LedgerStatus = Field(default=LedgerStatus.OPEN)
    occurrence_count: int = Field(default=1, ge=1)
    first_seen_at: datetime = Field(...)
    last_seen_at: datetime = Field(...)
    resolved_at: Optional[datetime] = Field(default=None)
    last_job_id: str = Field(...)
    resolved_by_job_id: Optional[str] = Field(default=None)

    @field_validator('severity', mode='before')
    @classmethod
    def parse_severity(cls, v):
        return Severity.parse(v)


class LedgerDelta(BaseModel):
    """
    Result of reconciling one job into the ledger.

    already_reconciled is True when the job had been reconciled before and
    the counts are the ones stored at that time.
    """

    job_id: str
    customer_id: str
    new: int = Field(default=0, ge=0)
    recurring: int = Field(default=0, ge=0)
    resolved: int = Field(default=0, ge=0)
    already_reconciled: bool = False

    @property
    def total_changes(self) -> int:
        return self.new + self.recurring + self.resolved

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')


__all__ = [
    'FindingInput',
    'RawFinding',
    'LedgerEntry',
    'LedgerDelta',
]
