# ============================================================================
# HANDLER POOL TESTS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Tests - Bounded handler pool
# PURPOSE: Verify slot accounting, reservations and backpressure
# CREATED: 19 OCT 2026
# ============================================================================
"""
Handler Pool Tests

Covers:
1. Slot accounting as handlers start and finish
2. Reservations: granted up to the free slots, consumed by submit, released
3. wait_for_slot / reserve time out when the pool stays full
4. Failed handlers are counted and logged, cancelled ones are not
5. Two listener loops sharing one pool never strand a received message

Run with:
    pytest tests/test_pool.py -v
"""

import asyncio
import dataclasses
import logging

import pytest

from orchestrator import Coordinator, HandlerPool


def _run(coro, timeout: float = 10.0):
    return asyncio.run(asyncio.wait_for(coro, timeout))


class TestSlots:

    def test_rejects_empty_pool(self):
        with pytest.raises(ValueError):
            HandlerPool(0)

    def test_accounting(self):

        async def scenario():
            pool = HandlerPool(2)
            gate = asyncio.Event()
            tasks = [pool.submit(gate.wait()), pool.submit(gate.wait())]
            during = (pool.in_flight, pool.available_slots)
            extra = gate.wait()
            try:
                with pytest.raises(RuntimeError):
                    pool.submit(extra)
            finally:
                extra.close()
            gate.set()
            await asyncio.gather(*tasks)
            return pool, during

        pool, during = _run(scenario())

        assert during == (2, 0)
        assert pool.in_flight == 0
        assert pool.available_slots == 2
        assert pool.handled == 2

    def test_failure_counted_and_logged(self, caplog):

        async def boom():
            raise ValueError("bad fragment")

        async def scenario():
            pool = HandlerPool(1)
            task = pool.submit(boom(), name="worker-results")
            await asyncio.gather(task, return_exceptions=True)
            await asyncio.sleep(0)
            return pool

        with caplog.at_level(logging.ERROR, logger="orchestrator.pool"):
            pool = _run(scenario())

        assert pool.failed == 1
        assert pool.handled == 0
        assert "left for redelivery: bad fragment" in caplog.text

    def test_cancel_all(self):

        async def scenario():
            pool = HandlerPool(3)
            tasks = [pool.submit(asyncio.sleep(60)) for _ in range(3)]
            await pool.cancel_all()
            await asyncio.sleep(0)
            return pool, tasks

        pool, tasks = _run(scenario())

        assert all(task.cancelled() for task in tasks)
        assert pool.in_flight == 0
        assert pool.failed == 0


class TestReservations:

    def test_grant_is_capped_by_free_slots(self):

        async def scenario():
            pool = HandlerPool(5)
            gate = asyncio.Event()
            pool.submit(gate.wait())
            granted = await pool.reserve(10)
            after_reserve = pool.available_slots
            gate.set()
            return pool, granted, after_reserve

        pool, granted, after_reserve = _run(scenario())

        assert granted == 4
        assert after_reserve == 0
        assert pool.reserved == 4

    def test_submit_consumes_reservation(self):

        async def scenario():
            pool = HandlerPool(3)
            granted = await pool.reserve(3)
            task = pool.submit(asyncio.sleep(0), reserved=True)
            consumed = (pool.reserved, pool.in_flight)
            pool.release(granted - 1)
            await task
            await asyncio.sleep(0)
            return pool, consumed

        pool, consumed = _run(scenario())

        assert consumed == (2, 1)
        assert pool.reserved == 0
        assert pool.available_slots == 3

    def test_reserved_submit_needs_a_reservation(self):

        async def scenario():
            pool = HandlerPool(2)
            coro = asyncio.sleep(0)
            try:
                with pytest.raises(RuntimeError):
                    pool.submit(coro, reserved=True)
            finally:
                coro.close()
            with pytest.raises(RuntimeError):
                pool.release(1)

        _run(scenario())

    def test_reservations_block_other_callers(self):

        async def scenario():
            pool = HandlerPool(2)
            held = await pool.reserve(2)
            timed_out = await pool.reserve(1, timeout=0.01)
            waiter = asyncio.create_task(pool.reserve(1, timeout=5))
            await asyncio.sleep(0.01)
            pool.release(held)
            return held, timed_out, await waiter

        assert _run(scenario()) == (2, 0, 1)

    def test_wait_for_slot_times_out_then_recovers(self):

        async def scenario():
            pool = HandlerPool(1)
            gate = asyncio.Event()
            task = pool.submit(gate.wait())
            full = await pool.wait_for_slot(timeout=0.01)
            gate.set()
            await task
            free = await pool.wait_for_slot(timeout=1)
            return full, free

        assert _run(scenario()) == (False, True)


class TestSharedPoolListeners:

    def test_two_loops_never_overfill(self, queues, blobs, fleet, fast_defaults):
        fast_defaults.coordinator = dataclasses.replace(
            fast_defaults.coordinator, max_concurrent_handlers=10
        )
        queues.declare("queue-a", "queue-b")
        coordinator = Coordinator(queues, blobs, fleet, fast_defaults)
        handled = []
        gate = asyncio.Event()

        async def slow_handler(message):
            handled.append(message.body)
            await gate.wait()
            await queues.acknowledge(message)

        async def scenario():
            loops = [
                asyncio.create_task(coordinator._listen("queue-a", 10, slow_handler)),
                asyncio.create_task(coordinator._listen("queue-b", 10, slow_handler)),
            ]
            # Both loops are polling empty queues before the burst arrives
            await asyncio.sleep(0.03)
            for i in range(10):
                queues.put("queue-a", f"a{i}")
                queues.put("queue-b", f"b{i}")

            while len(handled) < 10:
                await asyncio.sleep(0.005)
            await asyncio.sleep(0.03)
            saturated = (coordinator.pool.in_flight, len(handled))

            gate.set()
            while len(handled) < 20 or coordinator.pool.in_flight:
                await asyncio.sleep(0.005)

            coordinator._stop_event.set()
            for task in loops:
                task.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            return saturated

        saturated = _run(scenario())

        assert saturated == (10, 10)
        assert sorted(handled) == sorted([f"a{i}" for i in range(10)] + [f"b{i}" for i in range(10)])
        assert coordinator.stats()["loop_errors"] == 0
        assert queues.in_flight == {}
        assert coordinator.pool.failed == 0
        assert coordinator.pool.reserved == 0
