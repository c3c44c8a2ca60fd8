# ============================================================================
# LEDGER SERVICE
# ============================================================================
# STATUS: Service layer - read surface over the customer findings ledger
# PURPOSE: Open findings with remediation metadata, and the change view of
#          the latest reconciled assessment
# EXPORTS: LedgerService
# DEPENDENCIES: core.logic.metadata_matching, infrastructure repositories
# ============================================================================
"""
Ledger Read Service.

Read-only. The ledger is written by FindingReconciler alone.

    list_open_findings()   open entries, optionally filtered by module and
                           severity, each annotated by the first matching
                           remediation metadata rule
    get_changes()          new / recurring / resolved findings of the latest
                           reconciled job for the customer
"""

from typing import List, Optional

from core.logic import FindingMetadataMatcher, MetadataMatched
from core.models import (
    ChangeStatus,
    FindingChangesView,
    FindingView,
    LedgerEntry,
    LedgerStatus,
    RawFinding,
    Severity,
)
from exceptions import ValidationError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "LedgerService")


class LedgerService:
    """Customer findings queries."""

    def __init__(self, assessment_repo, ledger_repo, portal_repo):
        self.assessment_repo = assessment_repo
        self.ledger_repo = ledger_repo
        self.portal_repo = portal_repo

    @classmethod
    def create(cls) -> "LedgerService":
        from infrastructure import RepositoryFactory

        repos = RepositoryFactory.create_repositories()
        return cls(repos['assessment_repo'], repos['ledger_repo'], repos['portal_repo'])

    def _matcher(self) -> FindingMetadataMatcher:
        return FindingMetadataMatcher(self.portal_repo.list_finding_metadata_rules())

    def list_open_findings(
        self,
        customer_id: str,
        module_code: Optional[str] = None,
        severity: Optional[str] = None
    ) -> List[FindingView]:
        """
        Open ledger entries, highest severity first.

        Raises:
            ValidationError: Unknown severity filter
        """
        severity_filter = None
        if severity:
            normalized = severity.strip().lower()
            if normalized not in {s.value for s in Severity}:
                raise ValidationError(f"Invalid severity '{severity}'. Valid: {[s.value for s in Severity]}")
            severity_filter = Severity(normalized)

        entries = self.ledger_repo.list_entries(customer_id, status=LedgerStatus.OPEN, module_code=module_code)
        if severity_filter is not None:
            entries = [e for e in entries if e.severity == severity_filter]

        matcher = self._matcher()
        rank = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2, Severity.INFO: 3}
        entries.sort(key=lambda e: (rank[e.severity], e.module_code, e.finding_text))
        logger.debug(f"📋 {len(entries)} open findings for customer {customer_id}")
        return [self._entry_view(entry, matcher) for entry in entries]

    def get_changes(self, customer_id: str) -> FindingChangesView:
        """Findings that changed in the latest reconciled job."""
        jobs = self.assessment_repo.list_reconciled_jobs(customer_id, limit=2)
        if not jobs:
            return FindingChangesView(customer_id=customer_id)

        latest = jobs[0]
        matcher = self._matcher()
        view = FindingChangesView(
            customer_id=customer_id,
            current_job_id=latest.job_id,
            previous_job_id=jobs[1].job_id if len(jobs) > 1 else None,
            reconciled_at=latest.reconciled_at,
        )

        findings = {}
        for finding in self.assessment_repo.list_raw_findings(latest.job_id):
            if finding.change_status is not None:
                findings.setdefault(finding.fingerprint, finding)
        entries = self.ledger_repo.get_entries(customer_id, list(findings))

        for finding in findings.values():
            item = self._raw_view(finding, entries.get(finding.fingerprint), matcher)
            if finding.change_status == ChangeStatus.NEW:
                view.new.append(item)
            elif finding.change_status == ChangeStatus.RECURRING:
                view.recurring.append(item)

        for entry in self.ledger_repo.list_resolved_by_job(customer_id, latest.job_id):
            item = self._entry_view(entry, matcher)
            item.change_status = ChangeStatus.RESOLVED
            view.resolved.append(item)

        return view

    def _raw_view(self, finding: RawFinding, entry: Optional[LedgerEntry],
                  matcher: FindingMetadataMatcher) -> FindingView:
        if entry is not None:
            item = self._entry_view(entry, matcher)
        else:
            item = FindingView(
                fingerprint=finding.fingerprint,
                module_code=finding.module_code,
                severity=finding.severity,
                category=finding.category,
                resource_type=finding.resource_type,
                resource_id=finding.resource_id,
                resource_name=finding.resource_name,
                finding_text=finding.finding_text,
                recommendation=finding.recommendation,
            )
        item.change_status = finding.change_status
        return item

    @staticmethod
    def _entry_view(entry: LedgerEntry, matcher: FindingMetadataMatcher) -> FindingView:
        view = FindingView(
            fingerprint=entry.fingerprint,
            module_code=entry.module_code,
            severity=entry.severity,
            category=entry.category,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            resource_name=entry.resource_name,
            finding_text=entry.finding_text,
            recommendation=entry.recommendation,
            status=entry.status,
            occurrence_count=entry.occurrence_count,
            first_seen_at=entry.first_seen_at,
            last_seen_at=entry.last_seen_at,
            resolved_at=entry.resolved_at,
        )
        match = matcher.match(entry)
        if isinstance(match, MetadataMatched):
            view.effort_hours = match.effort_hours
            view.impact = match.impact
            view.owner = match.owner
            view.metadata_rule_id = match.rule.rule_id
        return view


__all__ = ['LedgerService']
