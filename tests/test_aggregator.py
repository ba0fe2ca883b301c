# ============================================================================
# AGGREGATOR TESTS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Tests - Fan-in, report and finalization
# PURPOSE: Verify result handling, deduplication and delivery ordering
# CREATED: 19 OCT 2026
# ============================================================================
"""
Aggregator Tests

Covers:
1. The report is independent of fragment arrival order
2. Error fragments count toward completion and are flagged
3. Redelivered results are not double counted
4. The completing message is acknowledged only after the report is stored
   and the completion notice sent
5. A failed finalization leaves the message for redelivery, and the
   redelivery finalizes the job exactly once
6. Results for unknown jobs and malformed results are acknowledged

Run with:
    pytest tests/test_aggregator.py -v
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config import QueueDefaults, StorageDefaults
from core.contracts import RecordOutcome
from core.models import Job, ResultFragment, TaskMessage
from infrastructure.base import QueueMessage, TransientServiceError
from messaging import MessagePublisher
from orchestrator.aggregator import Finalizer, ReportBuilder, ResultAggregator
from orchestrator.registry import JobRegistry


RESULT_QUEUE = QueueDefaults().result_queue


def _task(job_id: str, sequence: int, kind: str = "TOKENS") -> TaskMessage:
    return TaskMessage(
        analysis_kind=kind,
        resource_locator=f"https://example.org/{sequence}.txt",
        job_id=job_id,
        task_id=TaskMessage.make_task_id(job_id, sequence),
    )


def _success(job_id: str, sequence: int) -> ResultFragment:
    return ResultFragment.success(
        _task(job_id, sequence), f"mem://analysis/output/{job_id}/{sequence:06d}.txt"
    )


def _failure(job_id: str, sequence: int, error: str = "HTTP 404") -> ResultFragment:
    return ResultFragment.failure(_task(job_id, sequence), error)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def finalizer(registry, queues, blobs):
    queues.declare(RESULT_QUEUE, "reply-q")
    return Finalizer(registry, blobs, MessagePublisher(queues), StorageDefaults())


@pytest.fixture
def aggregator(registry, finalizer, queues):
    return ResultAggregator(registry, finalizer, queues)


async def _deliver_all(aggregator, queues):
    """Receive and handle everything on the result queue."""
    outcomes = []
    while True:
        messages = await queues.receive(RESULT_QUEUE, 10, 0)
        if not messages:
            return outcomes
        for message in messages:
            outcomes.append(await aggregator.handle_message(message))


# ============================================================================
# REPORT
# ============================================================================

class TestReportBuilder:

    def test_order_independent(self):
        fragments = [_success("job-1", 1), _failure("job-1", 2), _success("job-1", 3)]
        forward = Job(job_id="job-1", reply_address="q", total_tasks=3, results=fragments)
        backward = Job(job_id="job-1", reply_address="q", total_tasks=3, results=fragments[::-1])

        builder = ReportBuilder()
        assert builder.render(forward) == builder.render(backward)

    def test_content(self):
        job = Job(
            job_id="job-1",
            reply_address="q",
            total_tasks=2,
            results=[_failure("job-1", 2, "boom <script>"), _success("job-1", 1)],
        )
        lines = ReportBuilder().render(job).splitlines()

        assert lines[0] == "<html><body>"
        assert lines[1] == "<h1>Job job-1</h1>"
        assert lines[2] == '<p class="summary">2 results, 1 errors</p>'
        assert lines[3] == (
            "<p>TOKENS: https://example.org/1.txt "
            "mem://analysis/output/job-1/000001.txt</p>"
        )
        assert lines[4] == (
            '<p class="error">TOKENS: https://example.org/2.txt '
            "Exception: boom &lt;script&gt;</p>"
        )
        assert lines[-1] == "</body></html>"

    def test_empty_job(self):
        report = ReportBuilder().render(Job(job_id="job-0", reply_address="q", total_tasks=0))
        assert '<p class="summary">0 results, 0 errors</p>' in report


# ============================================================================
# RESULT HANDLING
# ============================================================================

class TestResultAggregator:

    def test_completes_job_and_notifies(self, aggregator, registry, queues, blobs):
        registry.create_job("reply-q", 3, job_id="job-1")
        for fragment in (_success("job-1", 2), _failure("job-1", 3), _success("job-1", 1)):
            queues.put(RESULT_QUEUE, fragment.to_body())

        outcomes = asyncio.run(_deliver_all(aggregator, queues))

        assert outcomes == [
            RecordOutcome.RECORDED,
            RecordOutcome.RECORDED,
            RecordOutcome.COMPLETED,
        ]
        assert registry.is_empty()
        assert queues.bodies("reply-q") == ["output/job-1.html"]
        assert blobs.content_types["output/job-1.html"] == "text/html"
        assert '<p class="summary">3 results, 1 errors</p>' in blobs.blobs["output/job-1.html"]
        assert queues.in_flight == {}

    def test_ack_after_report_and_notice(self, aggregator, registry, queues, calls):
        registry.create_job("reply-q", 1, job_id="job-1")
        queues.put(RESULT_QUEUE, _success("job-1", 1).to_body())

        asyncio.run(_deliver_all(aggregator, queues))

        assert calls == ["put:output/job-1.html", "send:reply-q", f"ack:{RESULT_QUEUE}"]

    def test_redelivered_result_not_double_counted(self, aggregator, registry, queues):
        registry.create_job("reply-q", 2, job_id="job-1")
        body = _success("job-1", 1).to_body()
        queues.put(RESULT_QUEUE, body)
        queues.put(RESULT_QUEUE, body)

        outcomes = asyncio.run(_deliver_all(aggregator, queues))

        assert outcomes == [RecordOutcome.RECORDED, RecordOutcome.DUPLICATE]
        assert registry.get("job-1").completed_tasks == 1
        assert aggregator.duplicates == 1
        assert queues.in_flight == {}

    def test_unknown_job_acknowledged(self, aggregator, registry, queues, caplog):
        registry.create_job("reply-q", 1, job_id="job-1")
        queues.put(RESULT_QUEUE, _success("job-404", 1).to_body())

        with caplog.at_level(logging.WARNING):
            outcomes = asyncio.run(_deliver_all(aggregator, queues))

        assert outcomes == [RecordOutcome.UNKNOWN_JOB]
        assert queues.in_flight == {}
        assert registry.get("job-1").completed_tasks == 0
        assert aggregator.unknown_job_results == 1
        assert "job-404" in caplog.text

    def test_malformed_result_acknowledged(self, aggregator, queues):
        queues.put(RESULT_QUEUE, "garbage")

        outcomes = asyncio.run(_deliver_all(aggregator, queues))

        assert outcomes == [RecordOutcome.UNKNOWN_JOB]
        assert aggregator.malformed_results == 1
        assert queues.in_flight == {}

    def test_result_after_finalization_is_unknown(self, aggregator, registry, queues):
        registry.create_job("reply-q", 1, job_id="job-1")
        body = _success("job-1", 1).to_body()
        queues.put(RESULT_QUEUE, body)
        asyncio.run(_deliver_all(aggregator, queues))

        queues.put(RESULT_QUEUE, body)
        outcomes = asyncio.run(_deliver_all(aggregator, queues))

        assert outcomes == [RecordOutcome.UNKNOWN_JOB]
        assert queues.bodies("reply-q") == ["output/job-1.html"]


class TestFinalizationFailure:

    def test_failed_store_retried_on_redelivery(self, aggregator, registry, queues, blobs):
        registry.create_job("reply-q", 2, job_id="job-1")
        queues.put(RESULT_QUEUE, _success("job-1", 1).to_body())
        queues.put(RESULT_QUEUE, _success("job-1", 2).to_body())
        blobs.fail_puts = 1

        with pytest.raises(TransientServiceError):
            asyncio.run(_deliver_all(aggregator, queues))

        # Completing message left unacknowledged, job still registered
        assert len(queues.in_flight) == 1
        assert "job-1" in registry
        assert queues.bodies("reply-q") == []

        assert queues.redeliver_unacked() == 1
        outcomes = asyncio.run(_deliver_all(aggregator, queues))

        assert outcomes == [RecordOutcome.COMPLETED]
        assert registry.is_empty()
        assert queues.bodies("reply-q") == ["output/job-1.html"]
        assert '<p class="summary">2 results, 0 errors</p>' in blobs.blobs["output/job-1.html"]

    def test_failed_notice_releases_claim(self, registry, blobs):
        publisher = MagicMock()
        publisher.notify_completion = AsyncMock(side_effect=TransientServiceError("down"))
        finalizer = Finalizer(registry, blobs, publisher, StorageDefaults())

        registry.create_job("reply-q", 1, job_id="job-1")
        assert registry.record_result("job-1", _success("job-1", 1)) is RecordOutcome.COMPLETED

        with pytest.raises(TransientServiceError):
            asyncio.run(finalizer.finalize("job-1"))

        assert "job-1" in registry
        # Claim released: the next delivery of the completing result re-claims
        assert registry.record_result("job-1", _success("job-1", 1)) is RecordOutcome.COMPLETED

    def test_concurrent_duplicates_finalize_once(self, aggregator, registry, queues):
        registry.create_job("reply-q", 1, job_id="job-1")
        body = _success("job-1", 1).to_body()
        for _ in range(5):
            queues.put(RESULT_QUEUE, body)

        async def handle_concurrently():
            messages = await queues.receive(RESULT_QUEUE, 10, 0)
            return await asyncio.gather(*(aggregator.handle_message(m) for m in messages))

        outcomes = asyncio.run(handle_concurrently())

        assert outcomes.count(RecordOutcome.COMPLETED) == 1
        assert outcomes.count(RecordOutcome.DUPLICATE) == 4
        assert queues.bodies("reply-q") == ["output/job-1.html"]
        assert aggregator.finalizer.jobs_finalized == 1
