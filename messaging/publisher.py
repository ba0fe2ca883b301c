# ============================================================================
# MESSAGE PUBLISHER
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Queue dispatch for every message type
# PURPOSE: Encode and send tasks, results, notices and job requests
# CREATED: 19 OCT 2026
# ============================================================================
"""
Message Publisher

One place that turns models into queue bodies and sends them. Used by
the coordinator (tasks, completion notices), the worker (results) and
the submitter (job requests, termination sentinel).

Failures propagate as InfrastructureError. The caller decides whether
that leaves its own inbound message unacknowledged.
"""

import logging
from typing import Optional

from core.config import QueueDefaults
from core.models import JobRequest, ResultFragment, TaskMessage
from infrastructure.base import QueueService

logger = logging.getLogger(__name__)


class MessagePublisher:
    """Publisher for all coordinator, worker and submitter messages."""

    def __init__(self, queues: QueueService, queue_defaults: Optional[QueueDefaults] = None):
        """
        Initialize publisher.

        Args:
            queues: Queue service used for every send
            queue_defaults: Queue names (defaults to QueueDefaults())
        """
        self.queues = queues
        self.queue_defaults = queue_defaults or QueueDefaults()

    async def dispatch_task(self, task: TaskMessage) -> str:
        """Send one task to the shared task queue."""
        message_id = await self.queues.send(self.queue_defaults.task_queue, task.to_body())
        logger.debug(
            f"Dispatched task {task.task_id} kind={task.analysis_kind} job={task.job_id}"
        )
        return message_id

    async def post_result(self, fragment: ResultFragment) -> str:
        """Send one worker result to the result queue."""
        message_id = await self.queues.send(self.queue_defaults.result_queue, fragment.to_body())
        logger.debug(
            f"Posted result for task {fragment.task_id} job={fragment.job_id} "
            f"error={fragment.is_error}"
        )
        return message_id

    async def notify_completion(self, reply_address: str, report_key: str) -> str:
        """Tell the submitter where its report is."""
        message_id = await self.queues.send(reply_address, report_key)
        logger.info(f"Completion notice sent to {reply_address}: {report_key}")
        return message_id

    async def submit_job(self, request: JobRequest) -> str:
        message_id = await self.queues.send(self.queue_defaults.intake_queue, request.to_body())
        logger.info(
            f"Job request sent: input={request.input_key} n={request.concurrency_hint} "
            f"reply={request.reply_address}"
        )
        return message_id

    async def request_termination(self) -> str:
        message_id = await self.queues.send(
            self.queue_defaults.intake_queue, self.queue_defaults.terminate_sentinel
        )
        logger.info("Termination sentinel sent")
        return message_id


__all__ = ["MessagePublisher"]
