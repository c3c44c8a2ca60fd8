"""
InMemoryStore tests - claim semantics, module transitions, outcome
replacement and reconciliation unit staging.
"""

from datetime import timedelta

import pytest

from core.models import JobStatus, ModuleResult, ModuleStatus
from core.schema import AssessmentQueueMessage, JobUpdateModel, ModuleResultUpdateModel, QueueReason
from exceptions import InvalidJobStateError, ResourceNotFoundError
from infrastructure.memory import InMemoryQueue
from tests.factories.model_factories import make_job, make_ledger_entry, make_raw_finding


@pytest.fixture
def job(store, clock):
    job = make_job(module_codes=["NETWORK", "BACKUP"], created_at=clock())
    store.create_job(job, [
        ModuleResult(job_id=job.job_id, module_code=code, sequence=i)
        for i, code in enumerate(job.module_codes)
    ])
    return job


class TestJobs:

    def test_create_is_idempotent(self, store, job):
        assert store.create_job(job, []) is False
        assert len(store.get_module_results(job.job_id)) == 2

    def test_returned_models_are_copies(self, store, job):
        fetched = store.get_job(job.job_id)
        fetched.cancel_requested = True
        assert store.get_job(job.job_id).cancel_requested is False

    def test_claim_queued_job(self, store, job, clock):
        claimed = store.claim_job(job.job_id, "w1", clock() - timedelta(minutes=10), clock())
        assert claimed.status == JobStatus.RUNNING
        assert claimed.worker_id == "w1"
        assert claimed.started_at == clock()
        assert claimed.last_progress_at == clock()

    def test_fresh_claim_is_exclusive(self, store, job, clock):
        store.claim_job(job.job_id, "w1", clock() - timedelta(minutes=10), clock())
        assert store.claim_job(job.job_id, "w2", clock() - timedelta(minutes=10), clock()) is None

    def test_stale_claim_can_be_taken_over(self, store, job, clock):
        started = clock()
        store.claim_job(job.job_id, "w1", started - timedelta(minutes=10), started)
        clock.advance(minutes=11)

        claimed = store.claim_job(job.job_id, "w2", clock() - timedelta(minutes=10), clock())

        assert claimed.worker_id == "w2"
        assert claimed.started_at == started

    def test_stuck_claim_can_be_taken_over(self, store, job, clock):
        store.claim_job(job.job_id, "w1", clock() - timedelta(minutes=10), clock())
        store.update_job(job.job_id, JobUpdateModel(is_stuck=True, stuck_since=clock()))

        claimed = store.claim_job(job.job_id, "w2", clock() - timedelta(minutes=10), clock())

        assert claimed.worker_id == "w2"
        assert claimed.is_stuck is False

    def test_progress_only_for_running_jobs(self, store, job, clock):
        assert store.record_progress(job.job_id, clock()) is False
        store.claim_job(job.job_id, "w1", clock(), clock())
        clock.advance(minutes=1)
        assert store.record_progress(job.job_id, clock()) is True
        assert store.get_job(job.job_id).last_progress_at == clock()

    def test_terminal_job_rejects_status_change(self, store, job, clock):
        store.claim_job(job.job_id, "w1", clock(), clock())
        assert store.finish_job(job.job_id, JobStatus.COMPLETED, JobUpdateModel()) is True
        assert store.finish_job(job.job_id, JobStatus.FAILED, JobUpdateModel()) is False
        with pytest.raises(InvalidJobStateError):
            store.update_job(job.job_id, JobUpdateModel(status=JobStatus.RUNNING))

    def test_stale_listings(self, store, job, clock):
        queued_before = clock() + timedelta(minutes=1)
        assert [j.job_id for j in store.list_stale_queued_jobs(queued_before)] == [job.job_id]

        store.claim_job(job.job_id, "w1", clock(), clock())
        assert store.list_stale_running_jobs(clock()) == []
        assert [j.job_id for j in store.list_stale_running_jobs(clock() + timedelta(seconds=1))] == [job.job_id]

    def test_queued_age_counts_from_last_enqueue(self, store, job, clock):
        clock.advance(minutes=20)
        store.update_job(job.job_id, JobUpdateModel(last_enqueued_at=clock()))

        assert store.list_stale_queued_jobs(clock() - timedelta(minutes=15)) == []
        assert [j.job_id for j in store.list_stale_queued_jobs(clock() + timedelta(seconds=1))] == [job.job_id]


class TestModuleResults:

    def test_pending_cannot_complete_directly(self, store, job):
        with pytest.raises(InvalidJobStateError):
            store.update_module_result(job.job_id, "NETWORK", ModuleResultUpdateModel(status=ModuleStatus.COMPLETED))

    def test_terminal_module_rejects_late_write(self, store, job):
        store.update_module_result(job.job_id, "network", ModuleResultUpdateModel(status=ModuleStatus.RUNNING))
        store.save_module_outcome(job.job_id, "NETWORK",
                                  ModuleResultUpdateModel(status=ModuleStatus.COMPLETED), [])
        with pytest.raises(InvalidJobStateError):
            store.save_module_outcome(job.job_id, "NETWORK",
                                      ModuleResultUpdateModel(status=ModuleStatus.FAILED), [])

    def test_unknown_module(self, store, job):
        with pytest.raises(ResourceNotFoundError):
            store.update_module_result(job.job_id, "COST", ModuleResultUpdateModel(status=ModuleStatus.RUNNING))

    def test_outcome_replaces_module_findings(self, store, job):
        first = [make_raw_finding(job.job_id, "NETWORK") for _ in range(3)]
        backup = [make_raw_finding(job.job_id, "BACKUP")]
        retry = [make_raw_finding(job.job_id, "NETWORK")]
        store.update_module_result(job.job_id, "NETWORK", ModuleResultUpdateModel(status=ModuleStatus.RUNNING))
        store.save_module_outcome(job.job_id, "NETWORK", ModuleResultUpdateModel(findings_count=3), first)
        store.update_module_result(job.job_id, "BACKUP", ModuleResultUpdateModel(status=ModuleStatus.RUNNING))
        store.save_module_outcome(job.job_id, "BACKUP", ModuleResultUpdateModel(findings_count=1), backup)

        store.save_module_outcome(job.job_id, "NETWORK",
                                  ModuleResultUpdateModel(status=ModuleStatus.COMPLETED, findings_count=1), retry)

        assert len(store.list_raw_findings(job.job_id)) == 2
        assert [f.fingerprint for f in store.list_raw_findings(job.job_id, ["network"])] == [retry[0].fingerprint]


class TestReconciliationUnit:

    def test_writes_apply_only_on_normal_exit(self, store, job):
        entry = make_ledger_entry(customer_id=job.customer_id)

        with pytest.raises(RuntimeError):
            with store.reconciliation_unit(job.customer_id, job.job_id) as unit:
                unit.insert_entry(entry)
                assert unit.get_entries([entry.fingerprint])
                raise RuntimeError("abort")

        assert store.get_entry(job.customer_id, entry.fingerprint) is None

        with store.reconciliation_unit(job.customer_id, job.job_id) as unit:
            unit.insert_entry(entry)
        assert store.get_entry(job.customer_id, entry.fingerprint) is not None

    def test_batch_entry_lookup(self, store, job):
        known = [make_ledger_entry(customer_id=job.customer_id) for _ in range(2)]
        with store.reconciliation_unit(job.customer_id, job.job_id) as unit:
            for entry in known:
                unit.insert_entry(entry)

        found = store.get_entries(job.customer_id, [known[0].fingerprint, "f" * 64, known[1].fingerprint])

        assert set(found) == {known[0].fingerprint, known[1].fingerprint}
        assert store.get_entries("cust-other", [known[0].fingerprint]) == {}
        assert store.get_entries(job.customer_id, []) == {}

    def test_duplicate_insert_rejected(self, store, job):
        entry = make_ledger_entry(customer_id=job.customer_id)
        with store.reconciliation_unit(job.customer_id, job.job_id) as unit:
            unit.insert_entry(entry)
        with pytest.raises(ValueError):
            with store.reconciliation_unit(job.customer_id, job.job_id) as unit:
                unit.insert_entry(entry)

    def test_unknown_job(self, store):
        with pytest.raises(ResourceNotFoundError):
            with store.reconciliation_unit("cust-x", "missing"):
                pass


class TestInMemoryQueue:

    def test_send_and_drain(self):
        queue = InMemoryQueue()
        message = AssessmentQueueMessage(job_id="job-1", customer_id="cust-1", reason=QueueReason.REDRIVE)

        message_id = queue.send_message("assessment-jobs", message)

        assert message_id.startswith("mem_")
        assert queue.messages("assessment-jobs")[0].job_id == "job-1"
        assert len(queue.drain("assessment-jobs")) == 1
        assert queue.messages("assessment-jobs") == []
