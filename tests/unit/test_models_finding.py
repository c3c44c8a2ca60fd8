"""
Finding model tests - module input, raw findings, ledger entries and deltas.
"""

import pytest
from pydantic import ValidationError

from core.models import FindingInput, LedgerDelta, LedgerStatus, RawFinding, Severity
from tests.factories.model_factories import make_ledger_entry


class TestFindingInput:

    def test_minimal(self):
        finding = FindingInput(finding_text="Storage account allows public blob access")
        assert finding.severity == Severity.INFO
        assert finding.resource_id is None

    @pytest.mark.parametrize("text", ["", "   "])
    def test_finding_text_required(self, text):
        with pytest.raises(ValidationError):
            FindingInput(finding_text=text)

    def test_extra_keys_ignored(self):
        finding = FindingInput(finding_text="x", Subscription="sub-1", severity="Critical")
        assert finding.severity == Severity.HIGH
        assert not hasattr(finding, "Subscription")


class TestRawFinding:

    def test_fingerprint_must_be_sha256_length(self):
        with pytest.raises(ValidationError):
            RawFinding(job_id="job-1", module_code="NETWORK", fingerprint="abc", finding_text="x")

    def test_valid(self, valid_sha256):
        raw = RawFinding(job_id="job-1", module_code="NETWORK", fingerprint=valid_sha256,
                         finding_text="x", severity="medium")
        assert raw.severity == Severity.MEDIUM
        assert raw.change_status is None


class TestLedgerEntry:

    def test_defaults(self):
        entry = make_ledger_entry()
        assert entry.status == LedgerStatus.OPEN
        assert entry.occurrence_count == 1
        assert entry.resolved_at is None

    def test_occurrence_count_positive(self):
        with pytest.raises(ValidationError):
            make_ledger_entry(occurrence_count=0)


class TestLedgerDelta:

    def test_totals_and_dict(self):
        delta = LedgerDelta(job_id="job-1", customer_id="cust-1", new=2, recurring=3, resolved=1)
        assert delta.total_changes == 6
        assert delta.to_dict() == {
            "job_id": "job-1",
            "customer_id": "cust-1",
            "new": 2,
            "recurring": 3,
            "resolved": 1,
            "already_reconciled": False,
        }
