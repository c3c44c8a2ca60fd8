"""
Assessment Calculations.

Pure functions over module results and raw findings.

Exports:
    calculate_progress_percent: Share of modules in a terminal state
    count_by_severity: High/medium/low/total counts for findings
    calculate_health_score: Default 0-100 health score
    completed_module_codes: Modules whose result is COMPLETED
    all_modules_terminal: True once no module is pending or running
    is_heartbeat_stale: Heartbeat older than a threshold
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from ..models.enums import ModuleStatus, Severity
from ..models.finding import RawFinding
from ..models.job import ModuleResult
from .transitions import is_module_terminal


def calculate_progress_percent(results: Sequence[ModuleResult]) -> int:
    """Whole-number percentage of modules in a terminal state (100 for an empty list)."""
    if not results:
        return 100
    done = sum(1 for r in results if is_module_terminal(r.status))
    return int(done * 100 / len(results))


def all_modules_terminal(results: Sequence[ModuleResult]) -> bool:
    return all(is_module_terminal(r.status) for r in results)


def completed_module_codes(results: Iterable[ModuleResult]) -> List[str]:
    return [r.module_code for r in results if r.status == ModuleStatus.COMPLETED]


def count_by_severity(findings: Iterable[RawFinding]) -> Dict[str, int]:
    """
    Severity counts over distinct fingerprints.

    Duplicate findings within a run count once, matching the ledger.
    """
    seen = {}
    for finding in findings:
        seen.setdefault(finding.fingerprint, finding.severity)
    counts = {"total": len(seen), "high": 0, "medium": 0, "low": 0}
    for severity in seen.values():
        if severity == Severity.HIGH:
            counts["high"] += 1
        elif severity == Severity.MEDIUM:
            counts["medium"] += 1
        elif severity == Severity.LOW:
            counts["low"] += 1
    return counts


def calculate_health_score(high: int, medium: int, low: int) -> int:
    """
    Default health score, 100 with no findings and falling towards 0.

    weighted = 3*high + 1.5*medium + 0.5*low
    score    = round(100 / (1 + weighted / 20))
    """
    weighted = high * 3 + medium * 1.5 + low * 0.5
    return int(round(100 / (1 + weighted / 20)))


def is_heartbeat_stale(
    last_progress_at: Optional[datetime],
    now: datetime,
    threshold_minutes: int
) -> bool:
    """True when the heartbeat is missing or older than threshold_minutes."""
    if last_progress_at is None:
        return True
    return last_progress_at < now - timedelta(minutes=threshold_minutes)
