# ============================================================================
# TASK CONSUMER
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Task queue consumer
# PURPOSE: Pull tasks one at a time, execute, post result, acknowledge
# CREATED: 19 OCT 2026
# ============================================================================
"""
Task Consumer

Listens to the shared task queue and processes one task at a time:

    receive -> execute -> post result -> acknowledge

The task is acknowledged only after its result is on the result queue.
If the worker dies in between, the task is redelivered and executed
again; the coordinator drops the duplicate result by task id.
"""

import asyncio
import logging

from core.models import MessageFormatError, TaskMessage
from infrastructure.base import QueueMessage, QueueService
from messaging import MessagePublisher
from worker.contracts import WorkerConfig
from worker.executor import TaskExecutor

logger = logging.getLogger(__name__)


class TaskConsumer:
    """
    Consumes the task queue.

    Usage:
        consumer = TaskConsumer(config, queues, executor, publisher)
        await consumer.run()        # until stop()
    """

    def __init__(
        self,
        config: WorkerConfig,
        queues: QueueService,
        executor: TaskExecutor,
        publisher: MessagePublisher,
    ):
        self.config = config
        self.queues = queues
        self.executor = executor
        self.publisher = publisher

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Stats
        self.messages_received = 0
        self.tasks_completed = 0
        self.tasks_failed = 0

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Receive and process tasks until stop() is called."""
        self._running = True
        self._shutdown_event.clear()
        logger.info(
            f"Consumer started: worker_id={self.config.worker_id}, "
            f"queue={self.config.task_queue}"
        )

        try:
            while not self._shutdown_event.is_set():
                try:
                    messages = await self.queues.receive(
                        self.config.task_queue, 1, self.config.wait_seconds
                    )
                    for message in messages:
                        self.messages_received += 1
                        await self.process_message(message)
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.exception(f"Error in receive loop: {e}")
                    await asyncio.sleep(self.config.error_backoff_seconds)
        finally:
            self._running = False

        logger.info(
            f"Consumer stopped. Stats: received={self.messages_received}, "
            f"completed={self.tasks_completed}, failed={self.tasks_failed}"
        )

    def stop(self) -> None:
        self._shutdown_event.set()

    async def process_message(self, message: QueueMessage) -> None:
        """
        Process a single task message.

        Execution or result-posting failures propagate with the message
        unacknowledged.
        """
        try:
            task = TaskMessage.from_body(message.body)
        except MessageFormatError as e:
            logger.error(f"Dropping malformed task message {message.message_id}: {e}")
            await self.queues.acknowledge(message)
            return

        fragment = await self.executor.execute(task)
        await self.publisher.post_result(fragment)
        await self.queues.acknowledge(message)

        if fragment.is_error:
            self.tasks_failed += 1
        else:
            self.tasks_completed += 1
        logger.info(f"Task {task.task_id} processed: error={fragment.is_error}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "TaskConsumer",
]
