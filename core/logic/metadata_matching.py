"""
Finding Remediation Metadata Matching.

Rules are typed matchers evaluated lowest priority number first (ties by
rule id). The first rule whose every non-null criterion matches wins. The
result is a tagged variant: MetadataMatched carries the rule and the
computed estimate, NoMetadataMatch carries nothing.

Exports:
    MetadataMatched
    NoMetadataMatch
    MetadataMatchResult
    FindingMetadataMatcher
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from ..models.enums import Severity
from ..models.finding import LedgerEntry
from ..models.finding_metadata import FindingMetadataRule


@dataclass(frozen=True)
class MetadataMatched:
    rule: FindingMetadataRule
    effort_hours: float
    impact: Severity
    owner: Optional[str]
    kind: str = "matched"


@dataclass(frozen=True)
class NoMetadataMatch:
    kind: str = "none"


MetadataMatchResult = Union[MetadataMatched, NoMetadataMatch]


def _contains(pattern: Optional[str], value: Optional[str]) -> bool:
    if not pattern:
        return True
    return pattern.lower() in (value or "").lower()


def _equals(expected: Optional[str], value: Optional[str]) -> bool:
    if not expected:
        return True
    return expected.strip().lower() == (value or "").strip().lower()


def rule_matches(rule: FindingMetadataRule, entry: LedgerEntry) -> bool:
    return (
        rule.is_active
        and _equals(rule.module_code, entry.module_code)
        and _equals(rule.category, entry.category)
        and _contains(rule.finding_pattern, entry.finding_text)
        and _contains(rule.recommendation_pattern, entry.recommendation)
    )


class FindingMetadataMatcher:
    """
    Ordered rule matcher.

    Example:
        matcher = FindingMetadataMatcher(rules)
        result = matcher.match(entry)
        if isinstance(result, MetadataMatched):
            hours = result.effort_hours
    """

    def __init__(self, rules: Iterable[FindingMetadataRule]):
        self._rules: List[FindingMetadataRule] = sorted(
            (r for r in rules if r.is_active),
            key=lambda r: (r.priority, r.rule_id)
        )

    @property
    def rules(self) -> List[FindingMetadataRule]:
        return list(self._rules)

    def match(self, entry: LedgerEntry, resource_count: int = 1) -> MetadataMatchResult:
        for rule in self._rules:
            if rule_matches(rule, entry):
                effort = rule.base_hours + rule.per_resource_hours * max(resource_count, 0)
                return MetadataMatched(
                    rule=rule,
                    effort_hours=round(effort, 2),
                    impact=rule.impact_override or entry.severity,
                    owner=rule.default_owner,
                )
        return NoMetadataMatch()
