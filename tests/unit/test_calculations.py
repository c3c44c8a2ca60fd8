"""
Progress, severity counting and health score tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.logic.calculations import (
    all_modules_terminal,
    calculate_health_score,
    calculate_progress_percent,
    completed_module_codes,
    count_by_severity,
    is_heartbeat_stale,
)
from core.models import ModuleResult, ModuleStatus
from tests.factories.model_factories import make_finding_input, make_raw_finding


def _results(*statuses):
    return [
        ModuleResult(job_id="job-1", module_code=f"M{i}", sequence=i, status=status)
        for i, status in enumerate(statuses)
    ]


class TestProgress:

    def test_empty_is_complete(self):
        assert calculate_progress_percent([]) == 100

    @pytest.mark.parametrize("statuses,expected", [
        ((ModuleStatus.PENDING, ModuleStatus.PENDING), 0),
        ((ModuleStatus.COMPLETED, ModuleStatus.RUNNING), 50),
        ((ModuleStatus.COMPLETED, ModuleStatus.FAILED, ModuleStatus.PENDING), 66),
        ((ModuleStatus.SKIPPED, ModuleStatus.FAILED, ModuleStatus.COMPLETED), 100),
    ])
    def test_terminal_share_rounded_down(self, statuses, expected):
        assert calculate_progress_percent(_results(*statuses)) == expected

    def test_all_terminal(self):
        assert all_modules_terminal(_results(ModuleStatus.COMPLETED, ModuleStatus.SKIPPED)) is True
        assert all_modules_terminal(_results(ModuleStatus.COMPLETED, ModuleStatus.RUNNING)) is False

    def test_completed_codes_excludes_failed_and_skipped(self):
        results = _results(ModuleStatus.COMPLETED, ModuleStatus.FAILED, ModuleStatus.SKIPPED, ModuleStatus.COMPLETED)
        assert completed_module_codes(results) == ["M0", "M3"]


class TestCountBySeverity:

    def test_counts_distinct_fingerprints(self):
        high = make_finding_input(severity="high")
        findings = [
            make_raw_finding("job-1", "NETWORK", high),
            make_raw_finding("job-1", "NETWORK", high),
            make_raw_finding("job-1", "NETWORK", make_finding_input(severity="medium")),
            make_raw_finding("job-1", "NETWORK", make_finding_input(severity="low")),
            make_raw_finding("job-1", "NETWORK", make_finding_input(severity="info")),
        ]
        assert count_by_severity(findings) == {"total": 4, "high": 1, "medium": 1, "low": 1}

    def test_empty(self):
        assert count_by_severity([]) == {"total": 0, "high": 0, "medium": 0, "low": 0}


class TestHealthScore:

    def test_no_findings_is_perfect(self):
        assert calculate_health_score(0, 0, 0) == 100

    @pytest.mark.parametrize("high,medium,low,expected", [
        (1, 0, 0, 87),
        (0, 2, 0, 87),
        (0, 0, 4, 91),
        (10, 0, 0, 40),
        (5, 4, 10, 43),
    ])
    def test_weighted_formula(self, high, medium, low, expected):
        assert calculate_health_score(high, medium, low) == expected

    def test_monotonic_in_high_findings(self):
        scores = [calculate_health_score(h, 0, 0) for h in range(0, 50, 5)]
        assert scores == sorted(scores, reverse=True)
        assert all(0 <= s <= 100 for s in scores)


class TestHeartbeatStale:

    def test_missing_heartbeat_is_stale(self):
        assert is_heartbeat_stale(None, datetime.now(timezone.utc), 10) is True

    def test_threshold_boundary(self):
        now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert is_heartbeat_stale(now - timedelta(minutes=9), now, 10) is False
        assert is_heartbeat_stale(now - timedelta(minutes=10), now, 10) is False
        assert is_heartbeat_stale(now - timedelta(minutes=11), now, 10) is True
