# ============================================================================
# COORDINATOR LOOP
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Single-instance coordination loop
# PURPOSE: Run the intake and result listeners until teardown completes
# CREATED: 19 OCT 2026
# ============================================================================
"""
Coordinator Loop

One coordinator runs per deployment. It drives three background tasks:

1. Intake loop  - job requests and the termination sentinel
2. Result loop  - worker results (fan-in, finalization)
3. Drain watch  - after the sentinel, waits until no job is open and no
                  handler is in flight, then runs the teardown

Both listener loops reserve slots in the shared HandlerPool, long-poll
their queue for at most that many messages, and hand each message to the
pool. Unused reservations go back to the pool after every receive.
An unexpected error in a loop is logged and the loop sleeps briefly and
continues; it never exits on its own.

Intake message handling:
    TERMINATE         -> request_termination, acknowledge
    after TERMINATE   -> acknowledge and drop (WARNING)
    malformed         -> acknowledge and drop (ERROR)
    job request       -> fan out, acknowledge
                         (fan-out failure leaves the message for redelivery)
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.config import Defaults
from core.contracts import CoordinatorState
from core.logging import log_context
from core.models import JobRequest, MessageFormatError, is_termination_request
from infrastructure.base import BlobStore, FleetProvisioner, QueueMessage, QueueService
from messaging import MessagePublisher
from orchestrator.aggregator import Finalizer, ResultAggregator
from orchestrator.autoscaler import AutoscalingController
from orchestrator.fan_out import TaskFanOut
from orchestrator.pool import HandlerPool
from orchestrator.registry import JobRegistry
from orchestrator.shutdown import ShutdownSequencer, TeardownReport

logger = logging.getLogger(__name__)


def job_id_for_message(queue: str, message_id: str) -> str:
    """Stable job id: the same intake message always yields the same job."""
    if not message_id:
        return uuid.uuid4().hex
    return uuid.uuid5(uuid.NAMESPACE_URL, f"{queue}/{message_id}").hex


class Coordinator:
    """
    The coordinating process.

    Usage:
        coordinator = Coordinator(queues, blobs, fleet, get_defaults())
        report = await coordinator.run()   # returns after teardown
    """

    def __init__(
        self,
        queues: QueueService,
        blobs: BlobStore,
        fleet: FleetProvisioner,
        defaults: Optional[Defaults] = None,
        registry: Optional[JobRegistry] = None,
    ):
        self.defaults = defaults or Defaults()
        self.queues = queues
        self.blobs = blobs
        self.fleet = fleet

        queue_defaults = self.defaults.queues
        self.registry = registry or JobRegistry()
        self.publisher = MessagePublisher(queues, queue_defaults)
        self.autoscaler = AutoscalingController(fleet, self.defaults.fleet)
        self.finalizer = Finalizer(self.registry, blobs, self.publisher, self.defaults.storage)
        self.fan_out = TaskFanOut(
            self.registry, blobs, self.publisher, self.autoscaler, self.finalizer
        )
        self.aggregator = ResultAggregator(self.registry, self.finalizer, queues)
        self.sequencer = ShutdownSequencer(
            fleet,
            queues,
            queue_defaults,
            self.defaults.fleet,
            terminate_self=self.defaults.coordinator.terminate_self,
        )
        self.pool = HandlerPool(self.defaults.coordinator.max_concurrent_handlers)

        # State
        self._stop_event = asyncio.Event()
        self._loop_tasks: List[asyncio.Task] = []
        self._teardown: Optional[TeardownReport] = None

        # Metrics
        self._started_at: Optional[datetime] = None
        self._jobs_accepted = 0
        self._requests_dropped = 0
        self._loop_errors = 0

    @property
    def state(self) -> CoordinatorState:
        return self.sequencer.state

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> None:
        """
        Create the well-known queues.

        Raises:
            InfrastructureError: A queue could not be created (fatal)
        """
        queue_defaults = self.defaults.queues
        for queue in (
            queue_defaults.intake_queue,
            queue_defaults.task_queue,
            queue_defaults.result_queue,
        ):
            await self.queues.create_queue(queue)

        self._started_at = datetime.now(timezone.utc)
        logger.info(
            f"Coordinator started: intake={queue_defaults.intake_queue} "
            f"tasks={queue_defaults.task_queue} results={queue_defaults.result_queue} "
            f"max_handlers={self.pool.max_concurrent}"
        )

    async def run(self) -> Optional[TeardownReport]:
        """
        Run until the termination sentinel has been processed and the
        teardown has finished.

        Returns:
            The teardown report, or None if stop() ended the run first
        """
        await self.start()

        queue_defaults = self.defaults.queues
        self._loop_tasks = [
            asyncio.create_task(
                self._listen(
                    queue_defaults.intake_queue,
                    queue_defaults.intake_batch_size,
                    self.handle_intake_message,
                ),
                name="intake-loop",
            ),
            asyncio.create_task(
                self._listen(
                    queue_defaults.result_queue,
                    queue_defaults.result_batch_size,
                    self.aggregator.handle_message,
                ),
                name="result-loop",
            ),
        ]

        try:
            drained = await self._wait_until_drained()
        finally:
            await self._stop_loops()

        if not drained:
            logger.info("Coordinator stopped before draining; skipping teardown")
            return None

        self._teardown = await self.sequencer.terminate()
        logger.info(
            f"Coordinator stopped: jobs_accepted={self._jobs_accepted} "
            f"teardown_errors={len(self._teardown.errors)}"
        )
        return self._teardown

    async def stop(self) -> None:
        """Stop listening without tearing anything down (signal handling)."""
        logger.info("Stopping coordinator loops")
        self._stop_event.set()
        await self._stop_loops()
        await self.pool.cancel_all()

    async def _stop_loops(self) -> None:
        self._stop_event.set()
        for task in self._loop_tasks:
            if not task.done():
                task.cancel()
        if self._loop_tasks:
            await asyncio.gather(*self._loop_tasks, return_exceptions=True)
        self._loop_tasks = []

    async def _wait_until_drained(self) -> bool:
        poll = self.defaults.coordinator.drain_poll_seconds
        while not self._stop_event.is_set():
            if self.sequencer.ready_to_terminate(self.registry.is_empty(), self.pool.in_flight):
                logger.info("Drained: no open jobs, no handlers in flight")
                return True
            await asyncio.sleep(poll)
        return False

    # ========================================================================
    # LISTENER LOOP
    # ========================================================================

    async def _listen(self, queue: str, batch_size: int, handler) -> None:
        """Receive from one queue and hand messages to the pool until stopped."""
        wait_seconds = self.defaults.queues.wait_seconds
        backoff = self.defaults.coordinator.error_backoff_seconds
        logger.info(f"Listening on {queue} (batch={batch_size})")

        while not self._stop_event.is_set():
            try:
                slots = await self.pool.reserve(batch_size, timeout=wait_seconds)
                if not slots:
                    continue

                try:
                    messages = await self.queues.receive(queue, slots, wait_seconds)
                    for message in messages[:slots]:
                        self.pool.submit(handler(message), name=queue, reserved=True)
                        slots -= 1
                finally:
                    self.pool.release(slots)

            except asyncio.CancelledError:
                break
            except Exception as e:
                self._loop_errors += 1
                logger.exception(f"Error in {queue} loop: {e}")
                await asyncio.sleep(backoff)

        logger.info(f"Stopped listening on {queue}")

    # ========================================================================
    # INTAKE
    # ========================================================================

    async def handle_intake_message(self, message: QueueMessage) -> None:
        """
        Handle one intake message, acknowledging it unless fan-out failed.

        Raises:
            InfrastructureError: Fan-out failed; message left for redelivery
        """
        sentinel = self.defaults.queues.terminate_sentinel

        with log_context(queue=message.queue):
            if is_termination_request(message.body, sentinel):
                logger.info("Termination requested")
                self.sequencer.request_termination()
                await self.queues.acknowledge(message)
                return

            if not self.sequencer.accepts_jobs():
                self._requests_dropped += 1
                logger.warning(
                    f"Dropping job request {message.message_id}: coordinator is "
                    f"{self.sequencer.state.value}"
                )
                await self.queues.acknowledge(message)
                return

            try:
                request = JobRequest.from_body(message.body)
            except MessageFormatError as e:
                self._requests_dropped += 1
                logger.error(f"Dropping malformed job request {message.message_id}: {e}")
                await self.queues.acknowledge(message)
                return

            job_id = job_id_for_message(message.queue, message.message_id)
            with log_context(job_id=job_id):
                logger.info(
                    f"Job request: input={request.input_key} n={request.concurrency_hint} "
                    f"reply={request.reply_address}"
                )
                total = await self.fan_out.split_and_dispatch(
                    request.input_key,
                    request.concurrency_hint,
                    request.reply_address,
                    job_id,
                )
                self._jobs_accepted += 1
                await self.queues.acknowledge(message)
                logger.info(f"Job {job_id} accepted with {total} tasks")

    # ========================================================================
    # STATUS
    # ========================================================================

    def stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "active_jobs": len(self.registry),
            "handlers_in_flight": self.pool.in_flight,
            "handler_slots": self.pool.max_concurrent,
            "jobs_accepted": self._jobs_accepted,
            "jobs_finalized": self.finalizer.jobs_finalized,
            "requests_dropped": self._requests_dropped,
            "results_recorded": self.aggregator.results_recorded,
            "duplicate_results": self.aggregator.duplicates,
            "unknown_job_results": self.aggregator.unknown_job_results,
            "workers_requested": self.autoscaler.instances_requested,
            "loop_errors": self._loop_errors,
        }


__all__ = ["Coordinator", "job_id_for_message"]
