# ============================================================================
# SERVICE BUS INFRASTRUCTURE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Infrastructure - Azure Service Bus messaging
# PURPOSE: QueueService adapter over Service Bus queues
# CREATED: 19 OCT 2026
# ============================================================================
"""
Service Bus Infrastructure

QueueService implementation on Azure Service Bus.

Mapping:
    - receive       -> peek-lock receive (the queue's lock duration is the
                       visibility timeout)
    - acknowledge   -> complete_message on the receiver that delivered it
    - create_queue  -> ServiceBusAdministrationClient.create_queue,
                       ResourceExistsError treated as success
    - delete_queue  -> ServiceBusAdministrationClient.delete_queue,
                       ResourceNotFoundError treated as success

Key Design Decisions:
    - Dual auth: connection string OR managed identity
    - Sender and receiver caching per queue
    - Error categorization: permanent vs transient

Usage:
    queues = ServiceBusQueueService(ServiceBusConfig.from_env())
    await queues.create_queue("worker-tasks")
    await queues.send("worker-tasks", body)

    for message in await queues.receive("worker-results", max_messages=10):
        ...
        await queues.acknowledge(message)
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential
from azure.servicebus import ServiceBusMessage, ServiceBusReceiveMode
from azure.servicebus.aio import ServiceBusClient, ServiceBusReceiver, ServiceBusSender
from azure.servicebus.aio.management import ServiceBusAdministrationClient
from azure.servicebus.exceptions import (
    MessageAlreadySettled,
    MessageLockLostError,
    MessagingEntityNotFoundError,
    OperationTimeoutError,
    ServiceBusCommunicationError,
    ServiceBusConnectionError,
    ServiceBusServerBusyError,
)

from infrastructure.base import (
    BaseAdapter,
    InfrastructureError,
    QueueMessage,
    QueueNotFoundError,
    QueueService,
    TransientServiceError,
)

logger = logging.getLogger(__name__)


_TRANSIENT_ERRORS = (
    OperationTimeoutError,
    ServiceBusServerBusyError,
    ServiceBusConnectionError,
    ServiceBusCommunicationError,
    MessageLockLostError,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class ServiceBusConfig:
    """Service Bus configuration from environment."""

    fully_qualified_namespace: str = ""
    connection_string: Optional[str] = None
    lock_duration_seconds: int = 60
    max_delivery_count: int = 10
    message_ttl_hours: int = 24

    @classmethod
    def from_env(cls) -> "ServiceBusConfig":
        """Load configuration from environment variables."""
        return cls(
            fully_qualified_namespace=os.environ.get(
                "SERVICE_BUS_NAMESPACE",
                os.environ.get("SERVICE_BUS_FQDN", "")
            ),
            connection_string=os.environ.get("SERVICE_BUS_CONNECTION_STRING"),
            lock_duration_seconds=int(os.environ.get("QUEUE_LOCK_SECONDS", "60")),
            max_delivery_count=int(os.environ.get("QUEUE_MAX_DELIVERY_COUNT", "10")),
            message_ttl_hours=int(os.environ.get("QUEUE_MESSAGE_TTL_HOURS", "24")),
        )

    @property
    def use_connection_string(self) -> bool:
        """Check if connection string auth should be used."""
        return bool(self.connection_string)


# ============================================================================
# QUEUE SERVICE
# ============================================================================

class ServiceBusQueueService(BaseAdapter, QueueService):
    """
    Async Service Bus queue service.

    One client and one administration client per process. Senders and
    receivers are cached per queue; a message must be completed on the
    receiver that delivered it, so the receiver travels in the message
    handle.
    """

    def __init__(self, config: Optional[ServiceBusConfig] = None):
        super().__init__()
        self.config = config or ServiceBusConfig.from_env()

        self._client: Optional[ServiceBusClient] = None
        self._admin: Optional[ServiceBusAdministrationClient] = None
        self._credential = None
        self._senders: Dict[str, ServiceBusSender] = {}
        self._receivers: Dict[str, ServiceBusReceiver] = {}
        self._lock = asyncio.Lock()

    def _classify(self, error: Exception) -> type:
        if isinstance(error, MessagingEntityNotFoundError):
            return QueueNotFoundError
        if isinstance(error, _TRANSIENT_ERRORS):
            return TransientServiceError
        return InfrastructureError

    # ========================================================================
    # CONNECTION MANAGEMENT
    # ========================================================================

    def _connect(self) -> None:
        """Create the data-plane and management clients."""
        if self._client is not None:
            return

        if self.config.use_connection_string:
            logger.info("Using connection string authentication")
            self._client = ServiceBusClient.from_connection_string(
                self.config.connection_string,
                retry_total=5,
                retry_backoff_factor=0.5,
                retry_backoff_max=60,
                retry_mode="exponential",
            )
            self._admin = ServiceBusAdministrationClient.from_connection_string(
                self.config.connection_string
            )
        else:
            if not self.config.fully_qualified_namespace:
                raise ValueError(
                    "SERVICE_BUS_NAMESPACE environment variable not set. "
                    "Required for managed identity authentication."
                )

            logger.info(f"Using managed identity for namespace: {self.config.fully_qualified_namespace}")
            self._credential = DefaultAzureCredential()
            self._client = ServiceBusClient(
                fully_qualified_namespace=self.config.fully_qualified_namespace,
                credential=self._credential,
                retry_total=5,
                retry_backoff_factor=0.5,
                retry_backoff_max=60,
                retry_mode="exponential",
            )
            self._admin = ServiceBusAdministrationClient(
                fully_qualified_namespace=self.config.fully_qualified_namespace,
                credential=self._credential,
            )

    async def _get_sender(self, queue_name: str) -> ServiceBusSender:
        """
        Get or create a message sender with connection warmup.

        Senders open their AMQP link lazily, and a message sent during link
        establishment can be lost, so the link is opened before caching.
        """
        async with self._lock:
            sender = self._senders.get(queue_name)
            if sender is not None:
                return sender

            self._connect()
            logger.debug(f"Creating new sender for queue: {queue_name}")
            sender = self._client.get_queue_sender(queue_name=queue_name)
            await sender._open()
            self._senders[queue_name] = sender
            return sender

    async def _get_receiver(self, queue_name: str) -> ServiceBusReceiver:
        async with self._lock:
            receiver = self._receivers.get(queue_name)
            if receiver is not None:
                return receiver

            self._connect()
            logger.debug(f"Creating new receiver for queue: {queue_name}")
            receiver = self._client.get_queue_receiver(
                queue_name=queue_name,
                receive_mode=ServiceBusReceiveMode.PEEK_LOCK,
            )
            self._receivers[queue_name] = receiver
            return receiver

    async def _drop_handlers(self, queue_name: str) -> None:
        """Close and forget the cached sender and receiver for a queue."""
        async with self._lock:
            sender = self._senders.pop(queue_name, None)
            receiver = self._receivers.pop(queue_name, None)

        for handler in (sender, receiver):
            if handler is None:
                continue
            try:
                await handler.close()
            except Exception as e:
                logger.warning(f"Error closing handler for {queue_name}: {e}")

    # ========================================================================
    # QUEUE MANAGEMENT
    # ========================================================================

    async def create_queue(self, name: str) -> str:
        self._connect()
        with self._error_context("create queue", name):
            try:
                await self._admin.create_queue(
                    name,
                    lock_duration=timedelta(seconds=self.config.lock_duration_seconds),
                    max_delivery_count=self.config.max_delivery_count,
                    default_message_time_to_live=timedelta(hours=self.config.message_ttl_hours),
                )
                logger.info(f"Created queue: {name}")
            except ResourceExistsError:
                logger.debug(f"Queue already exists: {name}")
        return name

    async def delete_queue(self, name: str) -> None:
        self._connect()
        await self._drop_handlers(name)
        with self._error_context("delete queue", name):
            try:
                await self._admin.delete_queue(name)
                logger.info(f"Deleted queue: {name}")
            except ResourceNotFoundError:
                logger.debug(f"Queue already gone: {name}")

    # ========================================================================
    # MESSAGING
    # ========================================================================

    async def send(self, queue: str, body: str) -> str:
        with self._error_context("send message", queue):
            sender = await self._get_sender(queue)
            sb_message = ServiceBusMessage(
                body=body,
                content_type="text/plain",
                time_to_live=timedelta(hours=self.config.message_ttl_hours),
            )
            await sender.send_messages(sb_message)

        message_id = sb_message.message_id or ""
        logger.debug(f"Message sent to {queue}: {message_id}")
        return message_id

    async def receive(
        self,
        queue: str,
        max_messages: int = 1,
        wait_seconds: float = 20,
    ) -> List[QueueMessage]:
        with self._error_context("receive messages", queue):
            receiver = await self._get_receiver(queue)
            raw_messages = await receiver.receive_messages(
                max_message_count=max_messages,
                max_wait_time=wait_seconds,
            )

        return [
            QueueMessage(
                message_id=str(raw.message_id),
                body=str(raw),
                queue=queue,
                handle=(receiver, raw),
                delivery_count=raw.delivery_count or 1,
            )
            for raw in raw_messages
        ]

    async def acknowledge(self, message: QueueMessage) -> None:
        receiver, raw = message.handle
        try:
            with self._error_context("complete message", message.message_id):
                await receiver.complete_message(raw)
        except InfrastructureError as e:
            if isinstance(e.__cause__, MessageAlreadySettled):
                logger.debug(f"Message already settled: {message.message_id}")
                return
            raise
        logger.debug(f"Completed message: {message.message_id}")

    async def close(self) -> None:
        """Close all connections."""
        for queue_name in list(set(self._senders) | set(self._receivers)):
            await self._drop_handlers(queue_name)

        if self._client:
            try:
                await self._client.close()
            except Exception as e:
                logger.warning(f"Error closing client: {e}")
            self._client = None

        if self._admin:
            try:
                await self._admin.close()
            except Exception as e:
                logger.warning(f"Error closing administration client: {e}")
            self._admin = None

        if self._credential:
            await self._credential.close()
            self._credential = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ServiceBusConfig",
    "ServiceBusQueueService",
]
