# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Infrastructure - Queues, blobs and compute
# PURPOSE: Abstract collaborators and their Azure adapters
# CREATED: 19 OCT 2026
# ============================================================================
"""
Infrastructure module for the analysis coordinator.

Provides:
- QueueService / BlobStore / FleetProvisioner: abstract contracts
- InfrastructureError and its subclasses
- ServiceBusQueueService, BlobRepository, AzureFleetProvisioner: Azure
  adapters (import from their modules; they pull in the Azure SDKs)

Usage:
    from infrastructure import QueueService, TransientServiceError
    from infrastructure.service_bus import ServiceBusQueueService
"""

from infrastructure.base import (
    InfrastructureError,
    TransientServiceError,
    QueueNotFoundError,
    BlobNotFoundError,
    ProvisioningError,
    QueueMessage,
    Instance,
    QueueService,
    BlobStore,
    FleetProvisioner,
)

__all__ = [
    # Errors
    'InfrastructureError',
    'TransientServiceError',
    'QueueNotFoundError',
    'BlobNotFoundError',
    'ProvisioningError',
    # Contracts
    'QueueMessage',
    'Instance',
    'QueueService',
    'BlobStore',
    'FleetProvisioner',
]
