"""
Finding fingerprint tests.

The fingerprint is the identity of a finding across runs, so these tests
pin down what it ignores and what it does not.
"""

import re

import pytest

from core.logic.fingerprint import compute_fingerprint, normalize_finding_text, to_raw_finding
from tests.factories.model_factories import make_finding_input

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


class TestNormalizeFindingText:

    @pytest.mark.parametrize("raw,expected", [
        ("Port 22 open", "port 22 open"),
        ("  Port   22\topen \n", "port 22 open"),
        ("", ""),
        (None, ""),
    ])
    def test_normalization(self, raw, expected):
        assert normalize_finding_text(raw) == expected


class TestComputeFingerprint:

    def test_is_sha256_hex(self):
        fp = compute_fingerprint("NETWORK", "NSG", "/subs/1/nsg-a", "Port 22 open")
        assert _HEX64.match(fp)

    def test_deterministic(self):
        args = ("NETWORK", "NSG", "/subs/1/nsg-a", "Port 22 open")
        assert compute_fingerprint(*args) == compute_fingerprint(*args)

    @pytest.mark.parametrize("variant", [
        ("network", "NSG", "/subs/1/nsg-a", "Port 22 open"),
        (" NETWORK ", "nsg", "/SUBS/1/NSG-A", "port  22   OPEN"),
        ("NETWORK", " NSG ", " /subs/1/nsg-a ", "\tPort 22 open\n"),
    ])
    def test_ignores_case_and_whitespace(self, variant):
        base = compute_fingerprint("NETWORK", "NSG", "/subs/1/nsg-a", "Port 22 open")
        assert compute_fingerprint(*variant) == base

    @pytest.mark.parametrize("changed", [
        ("BACKUP", "NSG", "/subs/1/nsg-a", "Port 22 open"),
        ("NETWORK", "Firewall", "/subs/1/nsg-a", "Port 22 open"),
        ("NETWORK", "NSG", "/subs/1/nsg-b", "Port 22 open"),
        ("NETWORK", "NSG", "/subs/1/nsg-a", "Port 3389 open"),
    ])
    def test_identity_fields_change_fingerprint(self, changed):
        base = compute_fingerprint("NETWORK", "NSG", "/subs/1/nsg-a", "Port 22 open")
        assert compute_fingerprint(*changed) != base

    def test_field_boundaries_are_preserved(self):
        """("ab", "c") and ("a", "bc") must not collide."""
        assert compute_fingerprint("NETWORK", "ab", "c", "x") != compute_fingerprint("NETWORK", "a", "bc", "x")

    def test_missing_optional_fields(self):
        assert _HEX64.match(compute_fingerprint("NETWORK", None, None, "text"))


class TestToRawFinding:

    def test_ignores_severity_and_wording_of_recommendation(self):
        first = make_finding_input(severity="high")
        second = first.model_copy(update={
            "severity": "low",
            "recommendation": "Something else entirely",
            "resource_name": "renamed",
        })
        a = to_raw_finding("job-1", "network", first)
        b = to_raw_finding("job-2", "NETWORK", second)
        assert a.fingerprint == b.fingerprint

    def test_carries_job_and_upper_module_code(self):
        finding = make_finding_input()
        raw = to_raw_finding("job-1", " backup ", finding)
        assert raw.job_id == "job-1"
        assert raw.module_code == "BACKUP"
        assert raw.finding_text == finding.finding_text
        assert raw.change_status is None
