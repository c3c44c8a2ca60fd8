"""
Pure Enumeration Types for the Assessment Engine.

Defines valid states for assessment jobs, module results, findings and
ledger entries. No business logic - pure type definitions only.

Exports:
    JobStatus: Assessment job state enumeration
    ModuleStatus: Per-module result state enumeration
    ChangeStatus: Reconciliation outcome for a raw finding
    LedgerStatus: Customer ledger entry state
    TriggerType: What started an assessment
    Severity: Finding severity
"""

from enum import Enum


class JobStatus(Enum):
    """
    Valid status values for assessment jobs.

    State transitions:
    - QUEUED -> RUNNING -> COMPLETED (at least one module completed)
    - QUEUED -> RUNNING -> FAILED (no module completed, or redrives exhausted)
    - RUNNING -> RUNNING (claim of a stuck job after re-delivery)
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ModuleStatus(Enum):
    """
    Valid status values for one module within a job.

    State transitions:
    - PENDING -> RUNNING -> COMPLETED
    - PENDING -> RUNNING -> FAILED
    - PENDING -> SKIPPED (cancellation honoured at a module boundary)
    - RUNNING -> RUNNING (re-driven after the owning worker stalled)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ChangeStatus(str, Enum):
    """Reconciliation outcome for a raw finding (assigned by the reconciler only)."""
    NEW = "new"
    RECURRING = "recurring"
    RESOLVED = "resolved"


class LedgerStatus(str, Enum):
    """Status of a customer ledger entry. Entries are never deleted."""
    OPEN = "open"
    RESOLVED = "resolved"


class TriggerType(str, Enum):
    """What started an assessment."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    PRE_MEETING = "pre_meeting"


class Severity(str, Enum):
    """Finding severity as reported by audit modules."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @classmethod
    def parse(cls, value) -> "Severity":
        """Case-insensitive parse; unknown labels fall back to INFO."""
        if isinstance(value, Severity):
            return value
        if value is None:
            return cls.INFO
        normalized = str(value).strip().lower()
        if normalized in ("critical", "high"):
            return cls.HIGH
        for member in cls:
            if member.value == normalized:
                return member
        return cls.INFO


__all__ = [
    'JobStatus',
    'ModuleStatus',
    'ChangeStatus',
    'LedgerStatus',
    'TriggerType',
    'Severity',
]
