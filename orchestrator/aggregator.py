# ============================================================================
# RESULT AGGREGATOR
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Result fan-in, report rendering, job finalization
# PURPOSE: Count worker results and deliver the combined report exactly once
# CREATED: 19 OCT 2026
# ============================================================================
"""
Result Aggregator

Per result message:

    parse -> record_result -> (COMPLETED) finalize -> acknowledge

| Outcome             | Action                                     |
|---------------------|--------------------------------------------|
| unparsable body     | log ERROR, acknowledge                     |
| UNKNOWN_JOB         | log WARNING (anomaly), acknowledge         |
| DUPLICATE           | log DEBUG, acknowledge                     |
| RECORDED            | acknowledge                                |
| COMPLETED           | finalize, then acknowledge                 |

Finalization writes the report blob, sends the report key to the job's
reply address and only then removes the job from the registry. If any
step fails the claim is released and the message is left
unacknowledged; its redelivery re-claims and retries. The report key is
stable, so a retried write overwrites the same blob.

Worker-reported errors are ordinary fragments: they count toward
completion and are rendered as error lines.
"""

import html
import logging
from typing import Optional

from core.config import StorageDefaults
from core.contracts import RecordOutcome
from core.logging import log_context
from core.models import Job, MessageFormatError, ResultFragment
from infrastructure.base import BlobStore, QueueMessage, QueueService
from messaging import MessagePublisher
from orchestrator.registry import JobRegistry

logger = logging.getLogger(__name__)


# ============================================================================
# REPORT
# ============================================================================

class ReportBuilder:
    """
    Renders a job's fragments as an HTML report.

    Output is deterministic: fragments are sorted by task id, then kind,
    locator and outcome, so arrival order never changes the report.
    """

    @staticmethod
    def sort_key(fragment: ResultFragment):
        return (
            fragment.task_id or "",
            fragment.analysis_kind,
            fragment.resource_locator,
            fragment.outcome,
        )

    def render_line(self, fragment: ResultFragment) -> str:
        kind = html.escape(fragment.analysis_kind)
        locator = html.escape(fragment.resource_locator)
        outcome = html.escape(fragment.outcome)
        if fragment.is_error:
            return f'<p class="error">{kind}: {locator} {outcome}</p>'
        return f"<p>{kind}: {locator} {outcome}</p>"

    def render(self, job: Job) -> str:
        fragments = sorted(job.results, key=self.sort_key)
        errors = sum(1 for fragment in fragments if fragment.is_error)
        lines = [
            "<html><body>",
            f"<h1>Job {html.escape(job.job_id)}</h1>",
            f'<p class="summary">{len(fragments)} results, {errors} errors</p>',
        ]
        lines.extend(self.render_line(fragment) for fragment in fragments)
        lines.append("</body></html>")
        return "\n".join(lines)


# ============================================================================
# FINALIZER
# ============================================================================

class Finalizer:
    """
    Delivers a completed job.

    The caller must hold the job's finalization claim (record_result
    returned COMPLETED, or claim_if_complete returned True).
    """

    def __init__(
        self,
        registry: JobRegistry,
        blobs: BlobStore,
        publisher: MessagePublisher,
        storage: Optional[StorageDefaults] = None,
        report_builder: Optional[ReportBuilder] = None,
    ):
        self.registry = registry
        self.blobs = blobs
        self.publisher = publisher
        self.storage = storage or StorageDefaults()
        self.report_builder = report_builder or ReportBuilder()

        self.jobs_finalized = 0

    async def finalize(self, job_id: str) -> str:
        """
        Store the report, notify the submitter, remove the job.

        Returns:
            The report blob key

        Raises:
            Whatever the store or notify step raised; the claim is
            released first so a redelivered message can retry.
        """
        try:
            job = self.registry.get(job_id)
            report = self.report_builder.render(job)
            report_key = self.storage.report_key(job_id)

            await self.blobs.put_text(report_key, report, content_type="text/html")
            await self.publisher.notify_completion(job.reply_address, report_key)
        except Exception as e:
            logger.error(f"Finalization of job {job_id} failed: {e}")
            self.registry.release_claim(job_id)
            raise

        self.registry.finalize(job_id)
        self.jobs_finalized += 1
        logger.info(
            f"Job {job_id} finalized: {job.total_tasks} tasks, report at {report_key}"
        )
        return report_key


# ============================================================================
# AGGREGATOR
# ============================================================================

class ResultAggregator:
    """
    Handles messages from the result queue.

    Usage:
        aggregator = ResultAggregator(registry, finalizer, queues)
        for message in await queues.receive(result_queue, 10, 20):
            await aggregator.handle_message(message)
    """

    def __init__(
        self,
        registry: JobRegistry,
        finalizer: Finalizer,
        queues: QueueService,
    ):
        self.registry = registry
        self.finalizer = finalizer
        self.queues = queues

        # Metrics
        self.results_recorded = 0
        self.duplicates = 0
        self.unknown_job_results = 0
        self.malformed_results = 0

    async def handle_message(self, message: QueueMessage) -> RecordOutcome:
        """
        Process one result message end to end, acknowledging it when done.

        Returns:
            The registry outcome (UNKNOWN_JOB also for unparsable bodies)

        Raises:
            InfrastructureError: Finalization failed; message left unacknowledged
        """
        try:
            fragment = ResultFragment.from_body(message.body)
        except MessageFormatError as e:
            self.malformed_results += 1
            logger.error(f"Dropping malformed result message {message.message_id}: {e}")
            await self.queues.acknowledge(message)
            return RecordOutcome.UNKNOWN_JOB

        with log_context(job_id=fragment.job_id, task_id=fragment.task_id, queue=message.queue):
            key = fragment.dedup_key(fallback=message.message_id)
            outcome = self.registry.record_result(fragment.job_id, fragment, key)

            if outcome is RecordOutcome.UNKNOWN_JOB:
                self.unknown_job_results += 1
                logger.warning(
                    f"Anomaly: result for unknown or finalized job {fragment.job_id} "
                    f"(message {message.message_id}); discarding"
                )
            elif outcome is RecordOutcome.DUPLICATE:
                self.duplicates += 1
                logger.debug(f"Duplicate result {key} for job {fragment.job_id}")
            else:
                self.results_recorded += 1
                if fragment.is_error:
                    logger.info(f"Task {key} reported an error: {fragment.outcome[:200]}")

            if outcome.is_now_complete:
                await self.finalizer.finalize(fragment.job_id)

            await self.queues.acknowledge(message)
            return outcome


__all__ = ["ReportBuilder", "Finalizer", "ResultAggregator"]
