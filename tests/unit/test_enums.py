"""
Enum tests - values are persisted and sent over the wire, so they are pinned.
"""

import pytest

from core.models.enums import ChangeStatus, JobStatus, LedgerStatus, ModuleStatus, Severity, TriggerType


class TestEnumValues:

    def test_job_status_values(self):
        assert {s.value for s in JobStatus} == {"queued", "running", "completed", "failed"}

    def test_module_status_values(self):
        assert {s.value for s in ModuleStatus} == {"pending", "running", "completed", "failed", "skipped"}

    def test_change_status_values(self):
        assert {s.value for s in ChangeStatus} == {"new", "recurring", "resolved"}

    def test_ledger_status_values(self):
        assert {s.value for s in LedgerStatus} == {"open", "resolved"}

    def test_trigger_type_values(self):
        assert {t.value for t in TriggerType} == {"manual", "scheduled", "pre_meeting"}


class TestSeverityParse:

    @pytest.mark.parametrize("raw,expected", [
        ("High", Severity.HIGH),
        ("CRITICAL", Severity.HIGH),
        (" medium ", Severity.MEDIUM),
        ("low", Severity.LOW),
        ("info", Severity.INFO),
        ("informational", Severity.INFO),
        ("", Severity.INFO),
        (None, Severity.INFO),
        (Severity.LOW, Severity.LOW),
    ])
    def test_parse(self, raw, expected):
        assert Severity.parse(raw) == expected
