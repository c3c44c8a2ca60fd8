"""
Core Data Models Package.

Contains pure data structures without business logic.
All business logic is in the core.logic package.

Exports:
    AssessmentJob, ModuleResult: Job database models
    FindingInput, RawFinding, LedgerEntry, LedgerDelta: Finding models
    TenantConnection: Read-only connection view
    FindingMetadataRule: Remediation metadata rule
    ScheduleTarget, ModuleFrequency: Scheduled assessment inputs
    WatchdogRun: Watchdog audit record
    AssessmentStatusView, ModuleStatusView: Poller projections
    FindingView, FindingChangesView: Findings surface projections
    JobStatus, ModuleStatus, ChangeStatus, LedgerStatus, TriggerType, Severity: Enums
"""

from .enums import (
    JobStatus,
    ModuleStatus,
    ChangeStatus,
    LedgerStatus,
    TriggerType,
    Severity,
)
from .job import AssessmentJob, ModuleResult, normalize_module_codes
from .finding import FindingInput, RawFinding, LedgerEntry, LedgerDelta
from .connection import TenantConnection
from .finding_metadata import FindingMetadataRule
from .schedule import ScheduleTarget, ModuleFrequency
from .watchdog import WatchdogRun, WatchdogRunStatus, WatchdogAction
from .status import AssessmentStatusView, ModuleStatusView, FindingView, FindingChangesView

__all__ = [
    'JobStatus',
    'ModuleStatus',
    'ChangeStatus',
    'LedgerStatus',
    'TriggerType',
    'Severity',
    'AssessmentJob',
    'ModuleResult',
    'normalize_module_codes',
    'FindingInput',
    'RawFinding',
    'LedgerEntry',
    'LedgerDelta',
    'TenantConnection',
    'FindingMetadataRule',
    'ScheduleTarget',
    'ModuleFrequency',
    'WatchdogRun',
    'WatchdogRunStatus',
    'WatchdogAction',
    'AssessmentStatusView',
    'ModuleStatusView',
    'FindingView',
    'FindingChangesView',
]
