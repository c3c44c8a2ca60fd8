# ============================================================================
# FINDING RECONCILER
# ============================================================================
# STATUS: Service layer - sole writer of the customer findings ledger
# PURPOSE: Classify a job's raw findings as new / recurring / resolved and
#          apply the delta to the ledger in one transaction
# EXPORTS: FindingReconciler
# DEPENDENCIES: infrastructure.interface_repository (ILedgerRepository)
# ============================================================================
"""
Finding Reconciler.

reconcile() runs inside ILedgerRepository.reconciliation_unit(), which is
serialised per customer and commits all or nothing. Inside the unit:

    1. If the job already carries reconciled_at, return the stored delta
    2. Group raw findings by fingerprint
    3. Unknown fingerprint      -> insert entry (open, occurrence 1), NEW
       Open entry               -> occurrence + 1, RECURRING
       Resolved entry           -> reopen, clear resolved_at, occurrence + 1, RECURRING
    4. Open entries of the scoped modules whose fingerprint was not seen
       -> resolved by this job
    5. Write change statuses onto the raw findings, store the delta on the
       job and set reconciled_at

Entries of modules outside the scope are never read or written, so a
NETWORK-only run cannot resolve BACKUP findings.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Sequence

from core.models import (
    ChangeStatus,
    LedgerDelta,
    LedgerEntry,
    LedgerStatus,
    RawFinding,
    Severity,
)
from exceptions import ReconciliationError, ResourceNotFoundError
from util_logger import LoggerFactory, ComponentType
from infrastructure.interface_repository import ILedgerRepository, IReconciliationUnit

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "FindingReconciler")

_SEVERITY_RANK = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}


def group_by_fingerprint(findings: Iterable[RawFinding]) -> Dict[str, RawFinding]:
    """
    One representative per fingerprint: the most severe, then the earliest recorded.
    """
    grouped: Dict[str, RawFinding] = {}
    for finding in findings:
        current = grouped.get(finding.fingerprint)
        if current is None or _SEVERITY_RANK[finding.severity] > _SEVERITY_RANK[current.severity]:
            grouped[finding.fingerprint] = finding
    return grouped


class FindingReconciler:
    """
    Applies one job's findings to the customer ledger.
    """

    def __init__(self, ledger_repo: ILedgerRepository,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.ledger_repo = ledger_repo
        self._clock = clock

    def reconcile(
        self,
        customer_id: str,
        job_id: str,
        module_codes: Sequence[str],
        raw_findings: Sequence[RawFinding]
    ) -> LedgerDelta:
        """
        Reconcile a job into the ledger.

        Args:
            customer_id: Ledger owner
            job_id: Job being reconciled
            module_codes: Modules whose open entries may be resolved
            raw_findings: The job's findings (all modules)

        Raises:
            ResourceNotFoundError: Job does not exist
            ReconciliationError: Anything failed; nothing was applied
        """
        scope = sorted({code.upper() for code in module_codes})
        now = self._clock()
        logger.info(
            f"🔄 [RECONCILER] Job {job_id[:8]} customer={customer_id}: "
            f"{len(raw_findings)} raw findings, resolution scope={scope}"
        )

        try:
            with self.ledger_repo.reconciliation_unit(customer_id, job_id) as unit:
                existing = unit.get_existing_delta()
                if existing is not None:
                    logger.info(
                        f"📋 [RECONCILER] Job {job_id[:8]} already reconciled "
                        f"(new={existing.new}, recurring={existing.recurring}, resolved={existing.resolved})"
                    )
                    return existing

                delta = self._apply(unit, customer_id, job_id, scope, raw_findings, now)
                unit.mark_reconciled(delta, now)
        except ResourceNotFoundError:
            raise
        except ReconciliationError:
            raise
        except Exception as e:
            logger.error(f"❌ [RECONCILER] Job {job_id[:8]} rolled back: {e}")
            raise ReconciliationError(job_id, str(e)) from e

        logger.info(
            f"✅ [RECONCILER] Job {job_id[:8]} reconciled: new={delta.new}, "
            f"recurring={delta.recurring}, resolved={delta.resolved}"
        )
        return delta

    def _apply(
        self,
        unit: IReconciliationUnit,
        customer_id: str,
        job_id: str,
        scope: List[str],
        raw_findings: Sequence[RawFinding],
        now: datetime
    ) -> LedgerDelta:
        grouped = group_by_fingerprint(raw_findings)
        entries = unit.get_entries(list(grouped))
        changes: Dict[str, ChangeStatus] = {}
        new_count = recurring_count = resolved_count = 0

        for fingerprint, finding in grouped.items():
            entry = entries.get(fingerprint)
            if entry is None:
                unit.insert_entry(self._new_entry(customer_id, job_id, finding, now))
                changes[fingerprint] = ChangeStatus.NEW
                new_count += 1
                continue

            updates = {
                'severity': finding.severity,
                'resource_type': finding.resource_type or entry.resource_type,
                'resource_name': finding.resource_name or entry.resource_name,
                'recommendation': finding.recommendation or entry.recommendation,
                'occurrence_count': entry.occurrence_count + 1,
                'last_seen_at': now,
                'last_job_id': job_id,
            }
            if entry.status == LedgerStatus.RESOLVED:
                updates.update({
                    'status': LedgerStatus.OPEN,
                    'resolved_at': None,
                    'resolved_by_job_id': None,
                })
                logger.debug(f"[RECONCILER] Reopened {fingerprint[:12]} ({finding.module_code})")
            unit.update_entry(entry.model_copy(update=updates))
            changes[fingerprint] = ChangeStatus.RECURRING
            recurring_count += 1

        if scope:
            for entry in unit.list_open_entries(scope):
                if entry.fingerprint in grouped:
                    continue
                unit.update_entry(entry.model_copy(update={
                    'status': LedgerStatus.RESOLVED,
                    'resolved_at': now,
                    'resolved_by_job_id': job_id,
                }))
                resolved_count += 1

        if changes:
            unit.set_change_statuses(changes)

        return LedgerDelta(
            job_id=job_id,
            customer_id=customer_id,
            new=new_count,
            recurring=recurring_count,
            resolved=resolved_count,
        )

    @staticmethod
    def _new_entry(customer_id: str, job_id: str, finding: RawFinding, now: datetime) -> LedgerEntry:
        return LedgerEntry(
            customer_id=customer_id,
            fingerprint=finding.fingerprint,
            module_code=finding.module_code,
            severity=finding.severity,
            category=finding.category,
            resource_type=finding.resource_type,
            resource_id=finding.resource_id,
            resource_name=finding.resource_name,
            finding_text=finding.finding_text,
            recommendation=finding.recommendation,
            status=LedgerStatus.OPEN,
            occurrence_count=1,
            first_seen_at=now,
            last_seen_at=now,
            last_job_id=job_id,
        )


__all__ = ['FindingReconciler', 'group_by_fingerprint']
