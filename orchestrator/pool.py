# ============================================================================
# HANDLER POOL
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Bounded concurrent message handling
# PURPOSE: Run per-message handlers with a hard concurrency limit
# CREATED: 19 OCT 2026
# ============================================================================
"""
Handler Pool

Both listener loops hand each received message to this pool. The pool
never grows past max_concurrent. Slots are reserved before receiving:

    granted = await pool.reserve(batch_size)
    try:
        messages = await queues.receive(queue, granted, wait)
        for message in messages:
            pool.submit(handler(message), reserved=True)
            granted -= 1
    finally:
        pool.release(granted)

A reservation is taken synchronously once a slot is free, so two loops
long-polling at the same time can never be promised the same slot and a
received message always has somewhere to run.

Handler exceptions are logged here. The handler did not acknowledge its
message, so the queue redelivers it once its visibility window lapses.
"""

import asyncio
import logging
from typing import Awaitable, Dict, Optional

logger = logging.getLogger(__name__)


class HandlerPool:
    """Bounded set of in-flight handler tasks."""

    def __init__(self, max_concurrent: int = 32):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self._active: Dict[int, asyncio.Task] = {}
        self._reserved = 0
        self._slot_freed = asyncio.Event()
        self._next_id = 0

        # Stats
        self.handled = 0
        self.failed = 0

    @property
    def in_flight(self) -> int:
        return len(self._active)

    @property
    def reserved(self) -> int:
        return self._reserved

    @property
    def available_slots(self) -> int:
        return max(0, self.max_concurrent - len(self._active) - self._reserved)

    async def wait_for_slot(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until at least one slot is free.

        Returns:
            True if a slot is free, False on timeout
        """
        while self.available_slots == 0:
            self._slot_freed.clear()
            try:
                await asyncio.wait_for(self._slot_freed.wait(), timeout)
            except asyncio.TimeoutError:
                return self.available_slots > 0
        return True

    async def reserve(self, wanted: int, timeout: Optional[float] = None) -> int:
        """
        Reserve up to `wanted` slots, waiting for at least one.

        Returns:
            Number of slots granted (0 on timeout)
        """
        if wanted < 1:
            return 0
        if not await self.wait_for_slot(timeout):
            return 0
        granted = min(wanted, self.available_slots)
        self._reserved += granted
        return granted

    def release(self, count: int) -> None:
        """Give back reserved slots that were not used."""
        if count <= 0:
            return
        if count > self._reserved:
            raise RuntimeError(f"Releasing {count} slots but only {self._reserved} reserved")
        self._reserved -= count
        self._slot_freed.set()

    def submit(self, handler: Awaitable, name: str = "handler", reserved: bool = False) -> asyncio.Task:
        """
        Start a handler, consuming a reservation if reserved is True.

        Raises:
            RuntimeError: No reservation to consume, or the pool is full
        """
        if reserved:
            if self._reserved == 0:
                raise RuntimeError("No reserved slot to consume")
            self._reserved -= 1
        elif self.available_slots == 0:
            raise RuntimeError(f"Handler pool full ({self.max_concurrent} in flight)")

        handler_id = self._next_id
        self._next_id += 1

        task = asyncio.create_task(handler, name=f"{name}-{handler_id}")
        self._active[handler_id] = task
        task.add_done_callback(lambda t, hid=handler_id: self._on_done(hid, t))
        return task

    def _on_done(self, handler_id: int, task: asyncio.Task) -> None:
        self._active.pop(handler_id, None)
        self._slot_freed.set()

        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.failed += 1
            logger.error(
                f"Handler {task.get_name()} failed; message left for redelivery: {error}",
                exc_info=error,
            )
        else:
            self.handled += 1

    async def cancel_all(self) -> None:
        tasks = list(self._active.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["HandlerPool"]
