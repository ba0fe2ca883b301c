# ============================================================================
# AUTOSCALER TESTS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Tests - Autoscaling controller
# PURPOSE: Verify scale-up arithmetic, fleet cap and serialization
# CREATED: 19 OCT 2026
# ============================================================================
"""
Autoscaler Tests

Covers:
1. compute_workers_to_create arithmetic and the fleet cap
2. ensure_capacity launches only the shortfall
3. Concurrent calls are serialized (no over-provisioning)
4. Provisioning failures are logged and swallowed

Run with:
    pytest tests/test_autoscaler.py -v
"""

import asyncio
import logging

import pytest

from core.config import FleetDefaults
from core.contracts import InstanceState
from orchestrator.autoscaler import AutoscalingController, compute_workers_to_create


class TestComputeWorkersToCreate:

    @pytest.mark.parametrize(
        "total, n, current, max_fleet, expected",
        [
            (10, 3, 2, 18, 2),    # ceil(10/3)=4, 2 running
            (10, 3, 5, 18, 0),    # already over capacity
            (100, 5, 0, 18, 18),  # 20 needed, capped at 18
            (100, 5, 10, 18, 8),  # cap counts existing workers
            (0, 3, 0, 18, 0),     # nothing to do
            (1, 1, 0, 18, 1),
            (5, 10, 0, 18, 1),    # hint larger than total still needs one worker
            (10, 1, 20, 18, 0),   # fleet already above the cap
        ],
    )
    def test_arithmetic(self, total, n, current, max_fleet, expected):
        assert compute_workers_to_create(total, n, current, max_fleet) == expected

    def test_never_negative(self):
        assert compute_workers_to_create(1, 1, 100, 18) == 0

    def test_invalid_hint(self):
        with pytest.raises(ValueError):
            compute_workers_to_create(10, 0, 0, 18)


class TestEnsureCapacity:

    def test_launches_shortfall(self, fleet):
        fleet.add("worker-a", "Worker", InstanceState.RUNNING)
        fleet.add("worker-b", "Worker", InstanceState.PENDING)
        fleet.add("worker-old", "Worker", InstanceState.TERMINATED)
        fleet.add("manager-0", "Manager", InstanceState.RUNNING)

        autoscaler = AutoscalingController(fleet, FleetDefaults())
        launched = asyncio.run(autoscaler.ensure_capacity(total_tasks=10, concurrency_hint=3))

        assert launched == 2
        assert fleet.calls == ["launch:Worker:2"]
        assert autoscaler.instances_requested == 2

    def test_no_launch_when_capacity_suffices(self, fleet):
        for i in range(5):
            fleet.add(f"worker-{i}", "Worker")
        autoscaler = AutoscalingController(fleet, FleetDefaults())

        assert asyncio.run(autoscaler.ensure_capacity(10, 3)) == 0
        assert fleet.calls == []

    def test_respects_fleet_cap(self, fleet):
        autoscaler = AutoscalingController(fleet, FleetDefaults(max_fleet_size=18))
        assert asyncio.run(autoscaler.ensure_capacity(100, 5)) == 18
        assert asyncio.run(autoscaler.ensure_capacity(100, 5)) == 0
        assert len(fleet.instances) == 18

    def test_concurrent_calls_do_not_over_provision(self, fleet):
        fleet.launch_delay = 0.01
        autoscaler = AutoscalingController(fleet, FleetDefaults())

        async def scale_twice():
            return await asyncio.gather(
                autoscaler.ensure_capacity(6, 2),
                autoscaler.ensure_capacity(6, 2),
            )

        results = asyncio.run(scale_twice())

        # The second call sees the first call's PENDING workers
        assert sorted(results) == [0, 3]
        assert len(fleet.instances) == 3

    def test_provisioning_failure_swallowed(self, fleet, caplog):
        fleet.fail_launches = True
        autoscaler = AutoscalingController(fleet, FleetDefaults())

        with caplog.at_level(logging.ERROR):
            launched = asyncio.run(autoscaler.ensure_capacity(10, 3))

        assert launched == 0
        assert autoscaler.provisioning_failures == 1
        assert "Launching 4 workers failed" in caplog.text
