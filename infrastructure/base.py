# ============================================================================
# BASE INFRASTRUCTURE - SERVICE CONTRACTS AND ERROR HANDLING
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Infrastructure - Abstract collaborators
# PURPOSE: Queue, blob and fleet contracts the coordinator is written against
# CREATED: 19 OCT 2026
# ============================================================================
"""
Base Infrastructure Contracts

The coordinator never talks to Azure directly. It is written against
three abstract services:

- QueueService:      at-least-once queues with visibility-based redelivery
- BlobStore:         key-addressed text objects
- FleetProvisioner:  role-tagged compute instances

Concrete adapters live beside this module (service_bus.py, storage.py,
fleet.py). Tests substitute in-memory fakes.

All adapters raise subclasses of InfrastructureError. The listener loops
use TransientServiceError to decide that a message should be left
unacknowledged for redelivery.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from core.contracts import InstanceState

logger = logging.getLogger(__name__)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class InfrastructureError(Exception):
    """Base exception for infrastructure operations."""

    def __init__(self, message: str, operation: str = None, entity_id: str = None):
        self.operation = operation
        self.entity_id = entity_id
        super().__init__(message)


class TransientServiceError(InfrastructureError):
    """A failure that may succeed if the same work is retried later."""


class QueueNotFoundError(InfrastructureError):
    """The addressed queue does not exist."""


class BlobNotFoundError(InfrastructureError):
    """The addressed blob does not exist."""


class ProvisioningError(InfrastructureError):
    """Launching or terminating compute instances failed."""


# ============================================================================
# VALUE TYPES
# ============================================================================

@dataclass(frozen=True)
class QueueMessage:
    """
    A received queue message.

    handle is adapter-specific (the Service Bus message object, an index
    in the in-memory fake). It is needed to acknowledge the message and is
    opaque to everything else.
    """
    message_id: str
    body: str
    queue: str
    handle: Any = field(default=None, compare=False, repr=False)
    delivery_count: int = 1


@dataclass(frozen=True)
class Instance:
    """A compute instance as seen by the fleet provisioner."""
    instance_id: str
    role: Optional[str]
    state: InstanceState
    tags: Dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def is_active(self) -> bool:
        return self.state.is_active()


# ============================================================================
# ERROR CONTEXT
# ============================================================================

class BaseAdapter:
    """
    Shared error handling for concrete adapters.

    Subclasses wrap SDK calls in _error_context so callers only ever see
    InfrastructureError subclasses.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def _classify(self, error: Exception) -> type:
        """Map an SDK exception to an InfrastructureError subclass."""
        return InfrastructureError

    @contextmanager
    def _error_context(self, operation: str, entity_id: Optional[str] = None):
        """
        Context manager for consistent error handling.

        Example:
            with self._error_context("send message", queue_name):
                await sender.send_messages(message)
        """
        try:
            yield
        except InfrastructureError:
            # Already has context
            raise
        except Exception as e:
            error_msg = f"{operation} failed"
            if entity_id:
                error_msg += f" for {entity_id}"
            error_msg += f": {e}"
            error_cls = self._classify(e)
            self.logger.error(error_msg)
            raise error_cls(error_msg, operation=operation, entity_id=entity_id) from e


# ============================================================================
# SERVICE CONTRACTS
# ============================================================================

class QueueService(ABC):
    """
    Durable at-least-once queues.

    A received message stays invisible to other receivers until it is
    acknowledged or its visibility window lapses, after which it is
    delivered again.
    """

    @abstractmethod
    async def create_queue(self, name: str) -> str:
        """Create a queue if missing. Returns its address (idempotent)."""

    @abstractmethod
    async def delete_queue(self, name: str) -> None:
        """Delete a queue. Deleting a missing queue is not an error."""

    @abstractmethod
    async def send(self, queue: str, body: str) -> str:
        """Send one message. Returns the message id."""

    @abstractmethod
    async def receive(
        self,
        queue: str,
        max_messages: int = 1,
        wait_seconds: float = 20,
    ) -> List[QueueMessage]:
        """Long-poll for up to max_messages. Empty list on timeout."""

    @abstractmethod
    async def acknowledge(self, message: QueueMessage) -> None:
        """Remove a received message permanently."""

    async def close(self) -> None:
        """Release connections."""


class BlobStore(ABC):
    """Key-addressed text object storage."""

    @abstractmethod
    async def put_text(self, key: str, text: str, content_type: str = "text/plain") -> str:
        """Write (overwrite) an object. Returns its locator."""

    @abstractmethod
    async def get_text(self, key: str) -> str:
        """Read an object. Raises BlobNotFoundError if missing."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def locator(self, key: str) -> str:
        """Externally resolvable address of a key."""

    async def close(self) -> None:
        """Release connections."""


class FleetProvisioner(ABC):
    """Role-tagged compute instances."""

    @abstractmethod
    async def list_instances(
        self,
        role: str,
        states: Optional[Iterable[InstanceState]] = None,
    ) -> List[Instance]:
        """List instances carrying the role tag, optionally filtered by state."""

    @abstractmethod
    async def launch_instances(self, role: str, count: int) -> List[str]:
        """Launch count instances tagged with role. Returns instance ids."""

    @abstractmethod
    async def terminate_instances(self, instance_ids: Iterable[str]) -> None:
        ...

    @abstractmethod
    async def self_instance_id(self) -> str:
        """Identity of the instance this process runs on."""

    async def count_active(self, role: str) -> int:
        """Running or pending instances with the role tag. Never cached."""
        instances = await self.list_instances(role)
        return sum(1 for instance in instances if instance.is_active)

    async def close(self) -> None:
        """Release connections."""


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "InfrastructureError",
    "TransientServiceError",
    "QueueNotFoundError",
    "BlobNotFoundError",
    "ProvisioningError",
    "QueueMessage",
    "Instance",
    "BaseAdapter",
    "QueueService",
    "BlobStore",
    "FleetProvisioner",
]
