"""
Core Business Logic Package.

Contains business logic that operates on pure data models.
Separated from models to maintain clean architecture.

Exports:
    State transitions: can_job_transition, can_module_transition, is_job_terminal, is_module_terminal
    Fingerprints: compute_fingerprint, normalize_finding_text, to_raw_finding
    Calculations: calculate_progress_percent, count_by_severity, calculate_health_score
    Metadata matching: FindingMetadataMatcher, MetadataMatched, NoMetadataMatch
    Scheduling: plan_due_modules, is_module_due
"""

from .transitions import (
    can_job_transition,
    can_module_transition,
    get_job_terminal_states,
    get_job_active_states,
    get_module_terminal_states,
    get_module_active_states,
    is_job_terminal,
    is_module_terminal,
)
from .fingerprint import compute_fingerprint, normalize_finding_text, to_raw_finding
from .calculations import (
    calculate_progress_percent,
    all_modules_terminal,
    completed_module_codes,
    count_by_severity,
    calculate_health_score,
    is_heartbeat_stale,
)
from .metadata_matching import (
    FindingMetadataMatcher,
    MetadataMatched,
    NoMetadataMatch,
    MetadataMatchResult,
)
from .scheduling import frequency_days, is_module_due, plan_due_modules

__all__ = [
    'can_job_transition',
    'can_module_transition',
    'get_job_terminal_states',
    'get_job_active_states',
    'get_module_terminal_states',
    'get_module_active_states',
    'is_job_terminal',
    'is_module_terminal',
    'compute_fingerprint',
    'normalize_finding_text',
    'to_raw_finding',
    'calculate_progress_percent',
    'all_modules_terminal',
    'completed_module_codes',
    'count_by_severity',
    'calculate_health_score',
    'is_heartbeat_stale',
    'FindingMetadataMatcher',
    'MetadataMatched',
    'NoMetadataMatch',
    'MetadataMatchResult',
    'frequency_days',
    'is_module_due',
    'plan_due_modules',
]
