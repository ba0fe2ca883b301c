# ============================================================================
# JOB REGISTRY TESTS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Tests - Job registry
# PURPOSE: Verify counting, deduplication and exactly-once completion
# CREATED: 19 OCT 2026
# ============================================================================
"""
Job Registry Tests

Covers:
1. create_job registers an ACTIVE job with a fixed total
2. record_result counts distinct tasks and drops duplicates
3. Exactly one caller sees COMPLETED, even under concurrency
4. Unknown jobs leave the registry unchanged
5. release_claim lets a redelivered message re-claim finalization
6. finalize removes the job; a second finalize fails

Run with:
    pytest tests/test_job_registry.py -v
"""

import threading

import pytest

from core.contracts import JobState, RecordOutcome
from core.models import ResultFragment, TaskMessage
from orchestrator.registry import JobNotFoundError, JobRegistry


def _fragment(job_id: str, sequence: int, outcome: str = None) -> ResultFragment:
    task = TaskMessage(
        analysis_kind="TOKENS",
        resource_locator=f"https://example.org/{sequence}",
        job_id=job_id,
        task_id=TaskMessage.make_task_id(job_id, sequence),
    )
    return ResultFragment.success(task, outcome or f"mem://out/{sequence}")


@pytest.fixture
def registry():
    return JobRegistry()


class TestCreateJob:

    def test_creates_active_job(self, registry):
        job_id = registry.create_job("reply-q", 3)
        job = registry.get(job_id)
        assert job.state is JobState.ACTIVE
        assert job.total_tasks == 3
        assert job.completed_tasks == 0
        assert job.reply_address == "reply-q"

    def test_ids_are_unique(self, registry):
        ids = {registry.create_job("reply-q", 1) for _ in range(50)}
        assert len(ids) == 50
        assert len(registry) == 50

    def test_caller_chosen_id(self, registry):
        assert registry.create_job("reply-q", 1, job_id="abc") == "abc"
        assert "abc" in registry

    def test_duplicate_id_rejected(self, registry):
        registry.create_job("reply-q", 1, job_id="abc")
        with pytest.raises(ValueError):
            registry.create_job("reply-q", 1, job_id="abc")

    def test_negative_total_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.create_job("reply-q", -1)

    def test_get_returns_snapshot(self, registry):
        job_id = registry.create_job("reply-q", 2)
        snapshot = registry.get(job_id)
        snapshot.completed_tasks = 2
        assert registry.get(job_id).completed_tasks == 0


class TestRecordResult:

    def test_counts_until_complete(self, registry):
        job_id = registry.create_job("reply-q", 3)
        assert registry.record_result(job_id, _fragment(job_id, 1)) is RecordOutcome.RECORDED
        assert registry.record_result(job_id, _fragment(job_id, 2)) is RecordOutcome.RECORDED
        assert registry.record_result(job_id, _fragment(job_id, 3)) is RecordOutcome.COMPLETED

        job = registry.get(job_id)
        assert job.state is JobState.COMPLETED
        assert job.completed_tasks == 3
        assert len(job.results) == 3

    def test_duplicate_not_counted(self, registry):
        job_id = registry.create_job("reply-q", 2)
        registry.record_result(job_id, _fragment(job_id, 1))
        assert registry.record_result(job_id, _fragment(job_id, 1)) is RecordOutcome.DUPLICATE
        job = registry.get(job_id)
        assert job.completed_tasks == 1
        assert len(job.results) == 1

    def test_duplicate_after_completion_does_not_reclaim(self, registry):
        job_id = registry.create_job("reply-q", 1)
        assert registry.record_result(job_id, _fragment(job_id, 1)) is RecordOutcome.COMPLETED
        assert registry.record_result(job_id, _fragment(job_id, 1)) is RecordOutcome.DUPLICATE

    def test_explicit_dedup_key(self, registry):
        job_id = registry.create_job("reply-q", 2)
        registry.record_result(job_id, _fragment(job_id, 1), dedup_key="msg-1")
        # Different fragment, same key: treated as the same delivery
        assert (
            registry.record_result(job_id, _fragment(job_id, 2), dedup_key="msg-1")
            is RecordOutcome.DUPLICATE
        )

    def test_unknown_job(self, registry):
        other = registry.create_job("reply-q", 1)
        assert registry.record_result("missing", _fragment("missing", 1)) is RecordOutcome.UNKNOWN_JOB
        assert registry.active_job_ids() == [other]
        assert registry.get(other).completed_tasks == 0

    def test_jobs_are_independent(self, registry):
        a = registry.create_job("reply-a", 1)
        b = registry.create_job("reply-b", 2)
        assert registry.record_result(a, _fragment(a, 1)) is RecordOutcome.COMPLETED
        assert registry.get(b).completed_tasks == 0

    def test_exactly_one_completion_under_concurrency(self, registry):
        total = 200
        job_id = registry.create_job("reply-q", total)
        outcomes = []
        outcomes_lock = threading.Lock()
        barrier = threading.Barrier(8)

        def deliver(worker: int):
            barrier.wait()
            # Every thread delivers every task: 7 of 8 deliveries are duplicates
            for sequence in range(1, total + 1):
                outcome = registry.record_result(job_id, _fragment(job_id, sequence))
                with outcomes_lock:
                    outcomes.append(outcome)

        threads = [threading.Thread(target=deliver, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count(RecordOutcome.COMPLETED) == 1
        assert outcomes.count(RecordOutcome.RECORDED) == total - 1
        assert registry.get(job_id).completed_tasks == total


class TestFinalization:

    def test_finalize_removes_job(self, registry):
        job_id = registry.create_job("reply-q", 1)
        registry.record_result(job_id, _fragment(job_id, 1))
        job = registry.finalize(job_id)
        assert job.job_id == job_id
        assert job_id not in registry
        assert registry.is_empty()

    def test_second_finalize_fails(self, registry):
        job_id = registry.create_job("reply-q", 1)
        registry.record_result(job_id, _fragment(job_id, 1))
        registry.finalize(job_id)
        with pytest.raises(JobNotFoundError):
            registry.finalize(job_id)

    def test_finalize_active_job_rejected(self, registry):
        job_id = registry.create_job("reply-q", 2)
        registry.record_result(job_id, _fragment(job_id, 1))
        with pytest.raises(ValueError):
            registry.finalize(job_id)
        assert job_id in registry

    def test_results_after_finalize_are_unknown(self, registry):
        job_id = registry.create_job("reply-q", 1)
        registry.record_result(job_id, _fragment(job_id, 1))
        registry.finalize(job_id)
        assert registry.record_result(job_id, _fragment(job_id, 1)) is RecordOutcome.UNKNOWN_JOB

    def test_released_claim_is_reclaimed_once(self, registry):
        job_id = registry.create_job("reply-q", 1)
        assert registry.record_result(job_id, _fragment(job_id, 1)) is RecordOutcome.COMPLETED

        registry.release_claim(job_id)

        # The redelivered completing message takes the claim again
        assert registry.record_result(job_id, _fragment(job_id, 1)) is RecordOutcome.COMPLETED
        assert registry.record_result(job_id, _fragment(job_id, 1)) is RecordOutcome.DUPLICATE
        assert registry.get(job_id).completed_tasks == 1

    def test_claim_zero_task_job(self, registry):
        job_id = registry.create_job("reply-q", 0)
        assert registry.claim_if_complete(job_id)
        assert not registry.claim_if_complete(job_id)
        assert registry.get(job_id).state is JobState.COMPLETED
        registry.finalize(job_id)
        assert registry.is_empty()

    def test_claim_incomplete_job_refused(self, registry):
        job_id = registry.create_job("reply-q", 1)
        assert not registry.claim_if_complete(job_id)
        assert not registry.claim_if_complete("missing")

    def test_discard(self, registry):
        job_id = registry.create_job("reply-q", 3)
        registry.discard(job_id)
        registry.discard(job_id)
        assert job_id not in registry

    def test_get_missing_raises(self, registry):
        with pytest.raises(JobNotFoundError):
            registry.get("missing")
