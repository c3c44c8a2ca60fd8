"""
FindingReconciler tests - ledger lifecycle, resolution scope, idempotence
and all-or-nothing commits.
"""

import threading

import pytest

from core.models import ChangeStatus, LedgerStatus, ModuleResult, ModuleStatus, Severity
from core.schema import ModuleResultUpdateModel
from exceptions import ReconciliationError, ResourceNotFoundError
from infrastructure.memory import InMemoryReconciliationUnit
from tests.factories.model_factories import make_finding_input, make_job, make_raw_finding

CUSTOMER = "cust-recon"


def _job_with_findings(store, findings_by_module):
    """
    Persist a job whose modules completed with the given FindingInputs.

    Returns:
        (job, raw_findings)
    """
    job = make_job(customer_id=CUSTOMER, module_codes=list(findings_by_module))
    store.create_job(job, [
        ModuleResult(job_id=job.job_id, module_code=code, sequence=i)
        for i, code in enumerate(job.module_codes)
    ])
    raw = []
    for code, inputs in findings_by_module.items():
        module_raw = [make_raw_finding(job.job_id, code, f) for f in inputs]
        store.update_module_result(job.job_id, code, ModuleResultUpdateModel(status=ModuleStatus.RUNNING))
        store.save_module_outcome(
            job.job_id, code,
            ModuleResultUpdateModel(status=ModuleStatus.COMPLETED, findings_count=len(module_raw)),
            module_raw,
        )
        raw.extend(module_raw)
    return job, raw


@pytest.fixture
def finding_a():
    return make_finding_input(severity="high")


@pytest.fixture
def finding_b():
    return make_finding_input(severity="medium")


@pytest.fixture
def finding_c():
    return make_finding_input(severity="low", category="Backup Policy")


class TestLedgerLifecycle:

    def test_first_run_is_all_new(self, store, reconciler, finding_a, finding_b):
        job, raw = _job_with_findings(store, {"NETWORK": [finding_a, finding_b]})
        delta = reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)

        assert (delta.new, delta.recurring, delta.resolved) == (2, 0, 0)
        entries = store.list_entries(CUSTOMER, status=LedgerStatus.OPEN)
        assert len(entries) == 2
        assert all(e.occurrence_count == 1 and e.last_job_id == job.job_id for e in entries)

    def test_new_recurring_resolved_then_reopened(self, store, reconciler, clock, finding_a, finding_b):
        job1, raw1 = _job_with_findings(store, {"NETWORK": [finding_a, finding_b]})
        reconciler.reconcile(CUSTOMER, job1.job_id, ["NETWORK"], raw1)
        fp_b = raw1[1].fingerprint

        clock.advance(days=7)
        job2, raw2 = _job_with_findings(store, {"NETWORK": [finding_a]})
        delta2 = reconciler.reconcile(CUSTOMER, job2.job_id, ["NETWORK"], raw2)
        assert (delta2.new, delta2.recurring, delta2.resolved) == (0, 1, 1)

        resolved = store.get_entry(CUSTOMER, fp_b)
        assert resolved.status == LedgerStatus.RESOLVED
        assert resolved.resolved_at == clock()
        assert resolved.resolved_by_job_id == job2.job_id

        clock.advance(days=7)
        job3, raw3 = _job_with_findings(store, {"NETWORK": [finding_a, finding_b]})
        delta3 = reconciler.reconcile(CUSTOMER, job3.job_id, ["NETWORK"], raw3)
        assert (delta3.new, delta3.recurring, delta3.resolved) == (0, 2, 0)

        reopened = store.get_entry(CUSTOMER, fp_b)
        assert reopened.status == LedgerStatus.OPEN
        assert reopened.resolved_at is None
        assert reopened.resolved_by_job_id is None
        assert reopened.occurrence_count == 2
        assert store.get_entry(CUSTOMER, raw1[0].fingerprint).occurrence_count == 3

    def test_first_seen_kept_last_seen_advanced(self, store, reconciler, clock, finding_a):
        job1, raw1 = _job_with_findings(store, {"NETWORK": [finding_a]})
        reconciler.reconcile(CUSTOMER, job1.job_id, ["NETWORK"], raw1)
        first_seen = clock()

        clock.advance(days=1)
        job2, raw2 = _job_with_findings(store, {"NETWORK": [finding_a]})
        reconciler.reconcile(CUSTOMER, job2.job_id, ["NETWORK"], raw2)

        entry = store.get_entry(CUSTOMER, raw1[0].fingerprint)
        assert entry.first_seen_at == first_seen
        assert entry.last_seen_at == clock()
        assert entry.last_job_id == job2.job_id

    def test_change_status_written_on_raw_findings(self, store, reconciler, finding_a, finding_b):
        job1, raw1 = _job_with_findings(store, {"NETWORK": [finding_a]})
        reconciler.reconcile(CUSTOMER, job1.job_id, ["NETWORK"], raw1)

        job2, raw2 = _job_with_findings(store, {"NETWORK": [finding_a, finding_b]})
        reconciler.reconcile(CUSTOMER, job2.job_id, ["NETWORK"], raw2)

        statuses = {f.fingerprint: f.change_status for f in store.list_raw_findings(job2.job_id)}
        assert statuses[raw2[0].fingerprint] == ChangeStatus.RECURRING
        assert statuses[raw2[1].fingerprint] == ChangeStatus.NEW

    def test_delta_stored_on_job(self, store, reconciler, finding_a, finding_b):
        job, raw = _job_with_findings(store, {"NETWORK": [finding_a, finding_b]})
        reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)

        stored = store.get_job(job.job_id)
        assert stored.is_reconciled
        assert stored.findings_new == 2
        assert stored.findings_recurring == 0


class TestResolutionScope:

    def test_network_only_run_never_resolves_backup(self, store, reconciler, finding_a, finding_c):
        job1, raw1 = _job_with_findings(store, {"NETWORK": [finding_a], "BACKUP": [finding_c]})
        reconciler.reconcile(CUSTOMER, job1.job_id, ["NETWORK", "BACKUP"], raw1)

        job2, _ = _job_with_findings(store, {"NETWORK": []})
        delta = reconciler.reconcile(CUSTOMER, job2.job_id, ["NETWORK"], [])

        assert delta.resolved == 1
        backup = store.list_entries(CUSTOMER, module_code="BACKUP")
        assert [e.status for e in backup] == [LedgerStatus.OPEN]
        network = store.list_entries(CUSTOMER, module_code="NETWORK")
        assert [e.status for e in network] == [LedgerStatus.RESOLVED]

    def test_empty_scope_resolves_nothing(self, store, reconciler, finding_a, finding_b):
        job1, raw1 = _job_with_findings(store, {"NETWORK": [finding_a]})
        reconciler.reconcile(CUSTOMER, job1.job_id, ["NETWORK"], raw1)

        job2, raw2 = _job_with_findings(store, {"NETWORK": [finding_b]})
        delta = reconciler.reconcile(CUSTOMER, job2.job_id, [], raw2)

        assert (delta.new, delta.resolved) == (1, 0)
        assert store.get_entry(CUSTOMER, raw1[0].fingerprint).status == LedgerStatus.OPEN

    def test_customers_are_isolated(self, store, reconciler, finding_a):
        job1, raw1 = _job_with_findings(store, {"NETWORK": [finding_a]})
        reconciler.reconcile(CUSTOMER, job1.job_id, ["NETWORK"], raw1)

        other = make_job(customer_id="cust-other", module_codes=["NETWORK"])
        store.create_job(other, [ModuleResult(job_id=other.job_id, module_code="NETWORK")])
        reconciler.reconcile("cust-other", other.job_id, ["NETWORK"], [])

        assert store.get_entry(CUSTOMER, raw1[0].fingerprint).status == LedgerStatus.OPEN


class TestUniquenessAndIdempotence:

    def test_duplicate_fingerprints_in_one_run_make_one_entry(self, store, reconciler, finding_a):
        louder = finding_a.model_copy(update={"severity": Severity.HIGH})
        quieter = finding_a.model_copy(update={"severity": Severity.LOW})
        job, raw = _job_with_findings(store, {"NETWORK": [quieter, louder, quieter]})

        delta = reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)

        assert delta.new == 1
        entries = store.list_entries(CUSTOMER)
        assert len(entries) == 1
        assert entries[0].severity == Severity.HIGH

    def test_second_reconcile_returns_stored_delta(self, store, reconciler, finding_a, finding_b):
        job, raw = _job_with_findings(store, {"NETWORK": [finding_a, finding_b]})
        first = reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)
        second = reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)

        assert second.already_reconciled is True
        assert (second.new, second.recurring, second.resolved) == (first.new, first.recurring, first.resolved)
        assert all(e.occurrence_count == 1 for e in store.list_entries(CUSTOMER))

    def test_concurrent_jobs_for_one_customer_serialise(self, store, reconciler, finding_a):
        job1, raw1 = _job_with_findings(store, {"NETWORK": [finding_a]})
        job2, raw2 = _job_with_findings(store, {"NETWORK": [finding_a]})
        deltas = {}

        def run(job, raw):
            deltas[job.job_id] = reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)

        threads = [threading.Thread(target=run, args=args) for args in ((job1, raw1), (job2, raw2))]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert sorted((d.new, d.recurring) for d in deltas.values()) == [(0, 1), (1, 0)]
        entries = store.list_entries(CUSTOMER)
        assert len(entries) == 1
        assert entries[0].occurrence_count == 2


class TestAtomicity:

    def test_failure_rolls_back_everything(self, store, reconciler, monkeypatch, finding_a, finding_b):
        job, raw = _job_with_findings(store, {"NETWORK": [finding_a, finding_b]})

        def boom(self, delta, now):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(InMemoryReconciliationUnit, "mark_reconciled", boom)

        with pytest.raises(ReconciliationError):
            reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)

        assert store.list_entries(CUSTOMER) == []
        assert store.get_job(job.job_id).reconciled_at is None
        assert all(f.change_status is None for f in store.list_raw_findings(job.job_id))

    def test_retry_after_failure_succeeds(self, store, reconciler, monkeypatch, finding_a):
        job, raw = _job_with_findings(store, {"NETWORK": [finding_a]})
        original = InMemoryReconciliationUnit.mark_reconciled
        calls = {"n": 0}

        def flaky(self, delta, now):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("deadlock detected")
            return original(self, delta, now)

        monkeypatch.setattr(InMemoryReconciliationUnit, "mark_reconciled", flaky)

        with pytest.raises(ReconciliationError):
            reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)
        delta = reconciler.reconcile(CUSTOMER, job.job_id, ["NETWORK"], raw)

        assert delta.new == 1
        assert len(store.list_entries(CUSTOMER)) == 1

    def test_unknown_job(self, reconciler):
        with pytest.raises(ResourceNotFoundError):
            reconciler.reconcile(CUSTOMER, "missing-job", ["NETWORK"], [])
