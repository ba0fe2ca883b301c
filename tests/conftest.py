# ============================================================================
# TEST FIXTURES
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Tests - Shared fakes and fixtures
# PURPOSE: In-memory queue, blob and fleet services for coordinator tests
# CREATED: 19 OCT 2026
# ============================================================================
"""
Shared test fixtures.

The fakes implement the same abstract contracts as the Azure adapters:

- FakeQueueService: at-least-once queues. Received messages stay
  in flight until acknowledged; redeliver_unacked() plays the part of an
  expired visibility window.
- FakeBlobStore: dict of key -> text.
- FakeFleetProvisioner: role-tagged instances with a fixed self identity.

Every fake appends to a shared call log so tests can assert ordering.
"""

import asyncio
import itertools
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set

import pytest

from core.config import (
    CoordinatorDefaults,
    Defaults,
    FleetDefaults,
    QueueDefaults,
    StorageDefaults,
    reset_defaults,
)
from core.contracts import InstanceState
from handlers import clear_analyzers
from infrastructure.base import (
    BlobNotFoundError,
    BlobStore,
    FleetProvisioner,
    Instance,
    ProvisioningError,
    QueueMessage,
    QueueNotFoundError,
    QueueService,
    TransientServiceError,
)


# ============================================================================
# FAKES
# ============================================================================

class FakeQueueService(QueueService):
    """In-memory at-least-once queues."""

    def __init__(self, calls: Optional[List[str]] = None):
        self.calls = calls if calls is not None else []
        self.queues: Dict[str, Deque[QueueMessage]] = {}
        self.in_flight: Dict[int, QueueMessage] = {}
        self.acknowledged: List[QueueMessage] = []
        self.deleted: List[str] = []
        self.fail_sends_to: Set[str] = set()
        self.fail_deletes_of: Set[str] = set()
        self._ids = itertools.count(1)
        self._handles = itertools.count(1)

    async def create_queue(self, name: str) -> str:
        self.calls.append(f"create_queue:{name}")
        self.queues.setdefault(name, deque())
        return name

    async def delete_queue(self, name: str) -> None:
        self.calls.append(f"delete_queue:{name}")
        if name in self.fail_deletes_of:
            raise TransientServiceError(f"delete {name} failed", operation="delete queue")
        self.queues.pop(name, None)
        self.deleted.append(name)

    async def send(self, queue: str, body: str) -> str:
        self.calls.append(f"send:{queue}")
        await asyncio.sleep(0)
        if queue in self.fail_sends_to:
            raise TransientServiceError(f"send to {queue} failed", operation="send")
        if queue not in self.queues:
            raise QueueNotFoundError(f"No queue {queue}", operation="send", entity_id=queue)
        message_id = f"msg-{next(self._ids)}"
        self.queues[queue].append(QueueMessage(message_id=message_id, body=body, queue=queue))
        return message_id

    async def receive(
        self,
        queue: str,
        max_messages: int = 1,
        wait_seconds: float = 20,
    ) -> List[QueueMessage]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds
        while True:
            if queue not in self.queues:
                raise QueueNotFoundError(f"No queue {queue}", operation="receive", entity_id=queue)
            pending = self.queues[queue]
            if pending:
                received = []
                while pending and len(received) < max_messages:
                    message = pending.popleft()
                    handle = next(self._handles)
                    leased = QueueMessage(
                        message_id=message.message_id,
                        body=message.body,
                        queue=queue,
                        handle=handle,
                        delivery_count=message.delivery_count,
                    )
                    self.in_flight[handle] = leased
                    received.append(leased)
                return received
            if loop.time() >= deadline:
                return []
            await asyncio.sleep(0.001)

    async def acknowledge(self, message: QueueMessage) -> None:
        self.calls.append(f"ack:{message.queue}")
        leased = self.in_flight.pop(message.handle, None)
        if leased is not None:
            self.acknowledged.append(leased)

    # Test helpers

    def declare(self, *names: str) -> None:
        """Create queues without logging a call."""
        for name in names:
            self.queues.setdefault(name, deque())

    def put(self, queue: str, body: str) -> str:
        """Enqueue without going through send() (and without logging a call)."""
        self.queues.setdefault(queue, deque())
        message_id = f"msg-{next(self._ids)}"
        self.queues[queue].append(QueueMessage(message_id=message_id, body=body, queue=queue))
        return message_id

    def redeliver_unacked(self) -> int:
        """Return every unacknowledged message to its queue."""
        count = 0
        for handle, message in list(self.in_flight.items()):
            del self.in_flight[handle]
            if message.queue in self.queues:
                self.queues[message.queue].append(
                    QueueMessage(
                        message_id=message.message_id,
                        body=message.body,
                        queue=message.queue,
                        delivery_count=message.delivery_count + 1,
                    )
                )
                count += 1
        return count

    def bodies(self, queue: str) -> List[str]:
        return [message.body for message in self.queues.get(queue, ())]


class FakeBlobStore(BlobStore):
    """In-memory blob container."""

    def __init__(self, calls: Optional[List[str]] = None):
        self.calls = calls if calls is not None else []
        self.blobs: Dict[str, str] = {}
        self.content_types: Dict[str, str] = {}
        self.fail_puts = 0

    async def put_text(self, key: str, text: str, content_type: str = "text/plain") -> str:
        self.calls.append(f"put:{key}")
        await asyncio.sleep(0)
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise TransientServiceError(f"put {key} failed", operation="put", entity_id=key)
        self.blobs[key] = text
        self.content_types[key] = content_type
        return self.locator(key)

    async def get_text(self, key: str) -> str:
        if key not in self.blobs:
            raise BlobNotFoundError(f"No blob {key}", operation="get", entity_id=key)
        return self.blobs[key]

    async def exists(self, key: str) -> bool:
        return key in self.blobs

    def locator(self, key: str) -> str:
        return f"mem://analysis/{key}"


class FakeFleetProvisioner(FleetProvisioner):
    """In-memory fleet; launched instances start PENDING."""

    def __init__(self, calls: Optional[List[str]] = None, self_id: str = "manager-0"):
        self.calls = calls if calls is not None else []
        self.instances: Dict[str, Instance] = {}
        self.self_id = self_id
        self.fail_launches = False
        self.fail_terminates = False
        self.launch_delay = 0.0
        self._ids = itertools.count(1)

    def add(self, instance_id: str, role: str, state: InstanceState = InstanceState.RUNNING) -> None:
        self.instances[instance_id] = Instance(
            instance_id=instance_id, role=role, state=state, tags={"Role": role}
        )

    async def list_instances(
        self,
        role: str,
        states: Optional[Iterable[InstanceState]] = None,
    ) -> List[Instance]:
        wanted = set(states) if states is not None else None
        return [
            instance
            for instance in self.instances.values()
            if instance.role == role and (wanted is None or instance.state in wanted)
        ]

    async def launch_instances(self, role: str, count: int) -> List[str]:
        self.calls.append(f"launch:{role}:{count}")
        if self.launch_delay:
            await asyncio.sleep(self.launch_delay)
        if self.fail_launches:
            raise ProvisioningError("quota exceeded", operation="launch")
        launched = []
        for _ in range(count):
            instance_id = f"{role.lower()}-{next(self._ids)}"
            self.add(instance_id, role, InstanceState.PENDING)
            launched.append(instance_id)
        return launched

    async def terminate_instances(self, instance_ids: Iterable[str]) -> None:
        ids = list(instance_ids)
        self.calls.append(f"terminate:{','.join(ids)}")
        if self.fail_terminates:
            raise ProvisioningError("terminate failed", operation="terminate")
        for instance_id in ids:
            instance = self.instances.get(instance_id)
            if instance is not None:
                self.instances[instance_id] = Instance(
                    instance_id=instance_id,
                    role=instance.role,
                    state=InstanceState.TERMINATED,
                    tags=instance.tags,
                )

    async def self_instance_id(self) -> str:
        return self.self_id


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def _reset_global_state():
    """Global defaults and the analyzer registry are process-wide."""
    reset_defaults()
    clear_analyzers()
    yield
    reset_defaults()
    clear_analyzers()


@pytest.fixture
def calls() -> List[str]:
    return []


@pytest.fixture
def queues(calls) -> FakeQueueService:
    return FakeQueueService(calls)


@pytest.fixture
def blobs(calls) -> FakeBlobStore:
    return FakeBlobStore(calls)


@pytest.fixture
def fleet(calls) -> FakeFleetProvisioner:
    return FakeFleetProvisioner(calls)


@pytest.fixture
def fast_defaults() -> Defaults:
    """Defaults with sub-second waits so loops turn over quickly."""
    return Defaults(
        queues=QueueDefaults(wait_seconds=0.01),
        fleet=FleetDefaults(max_fleet_size=18),
        storage=StorageDefaults(),
        coordinator=CoordinatorDefaults(
            max_concurrent_handlers=8,
            drain_poll_seconds=0.005,
            error_backoff_seconds=0.01,
        ),
    )
