"""
Remediation metadata rule matching tests.
"""

import pytest

from core.logic.metadata_matching import FindingMetadataMatcher, MetadataMatched, NoMetadataMatch
from core.models import FindingMetadataRule, Severity
from tests.factories.model_factories import make_ledger_entry


@pytest.fixture
def entry():
    return make_ledger_entry(
        module_code="NETWORK",
        severity="medium",
        category="NSG Configuration",
        finding_text="Inbound rule allows ANY source on port 22",
        recommendation="Restrict source ranges to the bastion subnet",
    )


class TestFindingMetadataMatcher:

    def test_no_rules_is_no_match(self, entry):
        assert isinstance(FindingMetadataMatcher([]).match(entry), NoMetadataMatch)

    def test_lowest_priority_number_wins(self, entry):
        rules = [
            FindingMetadataRule(rule_id=1, priority=200, module_code="NETWORK", default_owner="late"),
            FindingMetadataRule(rule_id=2, priority=10, module_code="NETWORK", default_owner="early"),
        ]
        result = FindingMetadataMatcher(rules).match(entry)
        assert isinstance(result, MetadataMatched)
        assert result.owner == "early"
        assert result.rule.rule_id == 2

    def test_ties_break_on_rule_id(self, entry):
        rules = [
            FindingMetadataRule(rule_id=9, priority=50, module_code="NETWORK"),
            FindingMetadataRule(rule_id=3, priority=50, module_code="NETWORK"),
        ]
        assert FindingMetadataMatcher(rules).match(entry).rule.rule_id == 3

    @pytest.mark.parametrize("criteria", [
        {"module_code": "network"},
        {"category": "nsg configuration"},
        {"finding_pattern": "any source"},
        {"recommendation_pattern": "BASTION"},
        {"module_code": "NETWORK", "category": "NSG Configuration", "finding_pattern": "port 22"},
    ])
    def test_case_insensitive_criteria_match(self, entry, criteria):
        rule = FindingMetadataRule(rule_id=1, **criteria)
        assert isinstance(FindingMetadataMatcher([rule]).match(entry), MetadataMatched)

    @pytest.mark.parametrize("criteria", [
        {"module_code": "BACKUP"},
        {"category": "NSG"},
        {"finding_pattern": "port 3389"},
        {"module_code": "NETWORK", "recommendation_pattern": "enable mfa"},
    ])
    def test_every_non_null_criterion_must_match(self, entry, criteria):
        rule = FindingMetadataRule(rule_id=1, **criteria)
        assert isinstance(FindingMetadataMatcher([rule]).match(entry), NoMetadataMatch)

    def test_inactive_rules_are_ignored(self, entry):
        rule = FindingMetadataRule(rule_id=1, module_code="NETWORK", is_active=False)
        assert isinstance(FindingMetadataMatcher([rule]).match(entry), NoMetadataMatch)

    def test_effort_scales_with_resources(self, entry):
        rule = FindingMetadataRule(rule_id=1, base_hours=2.0, per_resource_hours=0.25)
        matcher = FindingMetadataMatcher([rule])
        assert matcher.match(entry).effort_hours == 2.25
        assert matcher.match(entry, resource_count=8).effort_hours == 4.0

    def test_impact_defaults_to_entry_severity(self, entry):
        plain = FindingMetadataMatcher([FindingMetadataRule(rule_id=1)]).match(entry)
        assert plain.impact == Severity.MEDIUM

        override = FindingMetadataMatcher(
            [FindingMetadataRule(rule_id=1, impact_override="high")]
        ).match(entry)
        assert override.impact == Severity.HIGH
