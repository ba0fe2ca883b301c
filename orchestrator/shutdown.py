# ============================================================================
# SHUTDOWN SEQUENCER
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Drain and teardown protocol
# PURPOSE: Stop taking jobs, wait for open jobs, then tear everything down
# CREATED: 19 OCT 2026
# ============================================================================
"""
Shutdown Sequencer

State machine:

    RUNNING --request_termination()--> DRAINING
    DRAINING --terminate()-----------> TERMINATING --> STOPPED

terminate() may only run once the coordinator has drained: no job in the
registry and no handler in flight. Teardown order is fixed:

    1. terminate every Worker instance not already terminated
    2. delete the task, result and intake queues
    3. resolve our own instance id and terminate ourselves

Each step logs its failure and the sequence carries on. A failed step
never blocks a later one, but the order is never changed.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.config import FleetDefaults, QueueDefaults
from core.contracts import CoordinatorState, InstanceState
from core.logging import log_checkpoint
from infrastructure.base import FleetProvisioner, QueueService

logger = logging.getLogger(__name__)


@dataclass
class TeardownReport:
    """What terminate() managed to do."""
    workers_terminated: List[str] = field(default_factory=list)
    queues_deleted: List[str] = field(default_factory=list)
    self_instance_id: Optional[str] = None
    self_terminated: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.errors


class ShutdownSequencer:
    """
    Owns the coordinator state and runs the teardown.

    Usage:
        sequencer = ShutdownSequencer(fleet, queues)
        sequencer.request_termination()
        ...
        if sequencer.ready_to_terminate(registry.is_empty(), pool.in_flight):
            report = await sequencer.terminate()
    """

    def __init__(
        self,
        fleet: FleetProvisioner,
        queues: QueueService,
        queue_defaults: Optional[QueueDefaults] = None,
        fleet_settings: Optional[FleetDefaults] = None,
        terminate_self: bool = True,
    ):
        self.fleet = fleet
        self.queues = queues
        self.queue_defaults = queue_defaults or QueueDefaults()
        self.fleet_settings = fleet_settings or FleetDefaults()
        self.terminate_self = terminate_self

        self._state = CoordinatorState.RUNNING
        self._report: Optional[TeardownReport] = None

    @property
    def state(self) -> CoordinatorState:
        return self._state

    def accepts_jobs(self) -> bool:
        return self._state.accepts_jobs()

    def request_termination(self) -> bool:
        """
        Enter DRAINING. Idempotent.

        Returns:
            True if this call changed the state
        """
        if self._state is not CoordinatorState.RUNNING:
            logger.info(f"Termination already requested (state={self._state.value})")
            return False
        self._state = CoordinatorState.DRAINING
        log_checkpoint("drain_started")
        return True

    def ready_to_terminate(self, registry_empty: bool, in_flight: int) -> bool:
        return (
            self._state is CoordinatorState.DRAINING
            and registry_empty
            and in_flight == 0
        )

    async def terminate(self) -> TeardownReport:
        """
        Tear down workers, queues and this instance, in that order.

        Raises:
            RuntimeError: If called before termination was requested
        """
        if self._state is CoordinatorState.STOPPED and self._report is not None:
            return self._report
        if self._state is not CoordinatorState.DRAINING:
            raise RuntimeError(f"Cannot terminate from state {self._state.value}")

        self._state = CoordinatorState.TERMINATING
        report = TeardownReport()
        logger.info("Teardown started")

        await self._terminate_workers(report)
        await self._delete_queues(report)
        if self.terminate_self:
            await self._terminate_self(report)
        else:
            logger.info("Self-termination disabled; leaving this instance running")

        self._state = CoordinatorState.STOPPED
        self._report = report
        log_checkpoint(
            "teardown_complete",
            {
                "workers_terminated": len(report.workers_terminated),
                "queues_deleted": report.queues_deleted,
                "self_terminated": report.self_terminated,
                "errors": report.errors,
            },
        )
        return report

    # ========================================================================
    # TEARDOWN STEPS
    # ========================================================================

    async def _terminate_workers(self, report: TeardownReport) -> None:
        try:
            workers = await self.fleet.list_instances(
                self.fleet_settings.worker_role,
                # Stopped and failed VMs still hold resources
                states=(
                    InstanceState.PENDING,
                    InstanceState.RUNNING,
                    InstanceState.STOPPING,
                    InstanceState.STOPPED,
                ),
            )
            worker_ids = [worker.instance_id for worker in workers]
            if worker_ids:
                await self.fleet.terminate_instances(worker_ids)
            report.workers_terminated.extend(worker_ids)
            logger.info(f"Terminated {len(worker_ids)} workers")
        except Exception as e:
            logger.error(f"Worker termination failed: {e}")
            report.errors.append(f"workers: {e}")

    async def _delete_queues(self, report: TeardownReport) -> None:
        queues = (
            self.queue_defaults.task_queue,
            self.queue_defaults.result_queue,
            self.queue_defaults.intake_queue,
        )
        for queue in queues:
            try:
                await self.queues.delete_queue(queue)
                report.queues_deleted.append(queue)
            except Exception as e:
                logger.error(f"Deleting queue {queue} failed: {e}")
                report.errors.append(f"queue {queue}: {e}")

    async def _terminate_self(self, report: TeardownReport) -> None:
        try:
            instance_id = await self.fleet.self_instance_id()
            report.self_instance_id = instance_id
            logger.info(f"Terminating self: {instance_id}")
            await self.fleet.terminate_instances([instance_id])
            report.self_terminated = True
        except Exception as e:
            logger.error(f"Self-termination failed: {e}")
            report.errors.append(f"self: {e}")


__all__ = ["TeardownReport", "ShutdownSequencer"]
