# ============================================================================
# AUTOSCALING CONTROLLER
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Worker fleet sizing
# PURPOSE: Launch enough workers for the queued work, up to a hard cap
# CREATED: 19 OCT 2026
# ============================================================================
"""
Autoscaling Controller

Decides how many workers to launch after a job has been fanned out:

    needed    = ceil(total_tasks / concurrency_hint)
    current   = running + pending workers (queried fresh)
    to_create = min(needed - current, max_fleet_size - current)

The read-decide-act sequence runs under one asyncio.Lock, so two jobs
fanned out at the same moment cannot both see the same `current` and
over-provision. The fleet is never scaled down here.
"""

import asyncio
import logging
import math
from typing import Optional

from core.config import FleetDefaults
from core.logging import log_checkpoint
from infrastructure.base import FleetProvisioner, InfrastructureError

logger = logging.getLogger(__name__)


def compute_workers_to_create(
    total_tasks: int,
    concurrency_hint: int,
    current: int,
    max_fleet_size: int,
) -> int:
    """
    Number of workers to launch. Never negative.

    Examples:
        >>> compute_workers_to_create(10, 3, 2, 18)
        2
        >>> compute_workers_to_create(100, 5, 0, 18)
        18
    """
    if concurrency_hint < 1:
        raise ValueError(f"concurrency_hint must be >= 1, got {concurrency_hint}")
    needed = math.ceil(total_tasks / concurrency_hint)
    return max(0, min(needed - current, max_fleet_size - current))


class AutoscalingController:
    """
    Serialized fleet scale-up.

    Usage:
        autoscaler = AutoscalingController(fleet, FleetDefaults.from_env())
        launched = await autoscaler.ensure_capacity(total_tasks=10, concurrency_hint=3)
    """

    def __init__(
        self,
        fleet: FleetProvisioner,
        settings: Optional[FleetDefaults] = None,
    ):
        self.fleet = fleet
        self.settings = settings or FleetDefaults()
        self._lock = asyncio.Lock()

        # Metrics
        self.instances_requested = 0
        self.provisioning_failures = 0

    @property
    def max_fleet_size(self) -> int:
        return self.settings.max_fleet_size

    async def ensure_capacity(self, total_tasks: int, concurrency_hint: int) -> int:
        """
        Launch workers so the fleet can serve this job.

        Returns:
            Number of workers requested (0 if none were needed or
            provisioning failed)
        """
        worker_role = self.settings.worker_role

        async with self._lock:
            try:
                current = await self.fleet.count_active(worker_role)
            except InfrastructureError as e:
                logger.error(f"Fleet inventory failed; not scaling: {e}")
                self.provisioning_failures += 1
                return 0

            needed = math.ceil(total_tasks / concurrency_hint)
            to_create = compute_workers_to_create(
                total_tasks, concurrency_hint, current, self.max_fleet_size
            )

            if needed - current > to_create:
                logger.info(
                    f"Fleet cap {self.max_fleet_size} limits scale-up: "
                    f"needed={needed} current={current} launching={to_create}"
                )

            if to_create <= 0:
                logger.debug(f"No scale-up needed: needed={needed} current={current}")
                return 0

            try:
                launched = await self.fleet.launch_instances(worker_role, to_create)
            except InfrastructureError as e:
                logger.error(f"Launching {to_create} workers failed: {e}")
                self.provisioning_failures += 1
                return 0

            self.instances_requested += to_create
            log_checkpoint(
                "fleet_scaled",
                {
                    "needed": needed,
                    "current": current,
                    "requested": to_create,
                    "launched": list(launched),
                },
            )
            return to_create


__all__ = ["compute_workers_to_create", "AutoscalingController"]
