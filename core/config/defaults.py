# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for queues, fleet, storage, coordinator
# CREATED: 19 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for the coordinator, the workers and the
submitter. Every value can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from core.contracts import InstanceRole


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class QueueDefaults:
    """
    Defaults for queue names and receive behaviour.

    The three well-known queues are created idempotently by the
    coordinator at startup and deleted during teardown.
    """
    intake_queue: str = "coordinator-intake"
    task_queue: str = "worker-tasks"
    result_queue: str = "worker-results"

    # Long-poll receive
    wait_seconds: int = 20
    intake_batch_size: int = 1
    result_batch_size: int = 10

    # Peek-lock duration; acts as the visibility timeout
    lock_seconds: int = 60

    terminate_sentinel: str = "TERMINATE"

    # Reply queues created by submitters
    reply_queue_prefix: str = "submitter-reply-"

    @classmethod
    def from_env(cls) -> "QueueDefaults":
        """Create from environment variables."""
        return cls(
            intake_queue=os.getenv("INTAKE_QUEUE", "coordinator-intake"),
            task_queue=os.getenv("TASK_QUEUE", "worker-tasks"),
            result_queue=os.getenv("RESULT_QUEUE", "worker-results"),
            wait_seconds=int(os.getenv("QUEUE_WAIT_SECONDS", 20)),
            result_batch_size=int(os.getenv("RESULT_BATCH_SIZE", 10)),
            lock_seconds=int(os.getenv("QUEUE_LOCK_SECONDS", 60)),
            terminate_sentinel=os.getenv("TERMINATE_SENTINEL", "TERMINATE"),
            reply_queue_prefix=os.getenv("REPLY_QUEUE_PREFIX", "submitter-reply-"),
        )


@dataclass(frozen=True)
class InstanceTemplate:
    """Launch settings for one role of compute instance."""
    vm_size: str = "Standard_B2s"
    image_publisher: str = "Canonical"
    image_offer: str = "0001-com-ubuntu-server-jammy"
    image_sku: str = "22_04-lts-gen2"
    image_version: str = "latest"
    # Cloud-init script run on first boot (starts the coordinator or worker)
    custom_data: str = ""

    @classmethod
    def from_env(cls, prefix: str) -> "InstanceTemplate":
        """Create from environment variables named {prefix}_VM_SIZE etc."""
        return cls(
            vm_size=os.getenv(f"{prefix}_VM_SIZE", "Standard_B2s"),
            image_publisher=os.getenv(f"{prefix}_IMAGE_PUBLISHER", "Canonical"),
            image_offer=os.getenv(f"{prefix}_IMAGE_OFFER", "0001-com-ubuntu-server-jammy"),
            image_sku=os.getenv(f"{prefix}_IMAGE_SKU", "22_04-lts-gen2"),
            image_version=os.getenv(f"{prefix}_IMAGE_VERSION", "latest"),
            custom_data=os.getenv(f"{prefix}_CUSTOM_DATA", ""),
        )


@dataclass(frozen=True)
class FleetDefaults:
    """
    Defaults for the compute fleet.

    Instances are Azure virtual machines tagged {role_tag_key}: Manager|Worker.
    The fleet is never scaled down while the coordinator runs.
    """
    max_fleet_size: int = 18
    role_tag_key: str = "Role"
    manager_role: str = InstanceRole.MANAGER.value
    worker_role: str = InstanceRole.WORKER.value

    # Azure placement
    subscription_id: str = ""
    resource_group: str = ""
    location: str = "eastus"
    subnet_id: str = ""
    admin_username: str = "azureuser"
    ssh_public_key: str = ""
    managed_identity_id: str = ""

    worker: InstanceTemplate = field(default_factory=InstanceTemplate)
    manager: InstanceTemplate = field(default_factory=InstanceTemplate)

    # Instance metadata service used to resolve our own identity
    metadata_url: str = "http://169.254.169.254/metadata/instance/compute?api-version=2021-02-01"
    metadata_timeout_seconds: float = 2.0

    def template_for(self, role: str) -> InstanceTemplate:
        if role == self.manager_role:
            return self.manager
        return self.worker

    @classmethod
    def from_env(cls) -> "FleetDefaults":
        """Create from environment variables."""
        return cls(
            max_fleet_size=int(os.getenv("MAX_FLEET_SIZE", 18)),
            role_tag_key=os.getenv("ROLE_TAG_KEY", "Role"),
            subscription_id=os.getenv("AZURE_SUBSCRIPTION_ID", ""),
            resource_group=os.getenv("AZURE_RESOURCE_GROUP", ""),
            location=os.getenv("AZURE_LOCATION", "eastus"),
            subnet_id=os.getenv("AZURE_SUBNET_ID", ""),
            admin_username=os.getenv("VM_ADMIN_USERNAME", "azureuser"),
            ssh_public_key=os.getenv("VM_SSH_PUBLIC_KEY", ""),
            managed_identity_id=os.getenv("VM_MANAGED_IDENTITY_ID", ""),
            worker=InstanceTemplate.from_env("WORKER"),
            manager=InstanceTemplate.from_env("MANAGER"),
            metadata_url=os.getenv(
                "INSTANCE_METADATA_URL",
                "http://169.254.169.254/metadata/instance/compute?api-version=2021-02-01",
            ),
        )


@dataclass(frozen=True)
class StorageDefaults:
    """
    Defaults for blob storage.

    Key layout:
        input/{submission_id}/{filename}   directive files
        output/{job_id}/{task_id}.txt      per-task analysis output
        output/{job_id}.html               combined report
    """
    account_name: str = ""
    account_url: str = ""
    container: str = "analysis"
    input_prefix: str = "input"
    output_prefix: str = "output"
    report_suffix: str = ".html"
    task_output_suffix: str = ".txt"

    def report_key(self, job_id: str) -> str:
        return f"{self.output_prefix}/{job_id}{self.report_suffix}"

    def task_output_key(self, job_id: str, task_id: str) -> str:
        # Task ids embed the job id; keep only the per-job sequence part
        name = task_id.rsplit(":", 1)[-1]
        return f"{self.output_prefix}/{job_id}/{name}{self.task_output_suffix}"

    def input_key(self, submission_id: str, filename: str) -> str:
        return f"{self.input_prefix}/{submission_id}/{filename}"

    @property
    def resolved_account_url(self) -> str:
        if self.account_url:
            return self.account_url
        return f"https://{self.account_name}.blob.core.windows.net"

    @classmethod
    def from_env(cls) -> "StorageDefaults":
        """Create from environment variables."""
        return cls(
            account_name=os.getenv("STORAGE_ACCOUNT", ""),
            account_url=os.getenv("STORAGE_ACCOUNT_URL", ""),
            container=os.getenv("STORAGE_CONTAINER", "analysis"),
            input_prefix=os.getenv("INPUT_PREFIX", "input"),
            output_prefix=os.getenv("OUTPUT_PREFIX", "output"),
        )


@dataclass(frozen=True)
class CoordinatorDefaults:
    """
    Defaults for the coordinator process.
    """
    max_concurrent_handlers: int = 32
    health_port: int = 8080
    # Seconds between drain checks once the sentinel has been received
    drain_poll_seconds: float = 1.0
    # Sleep after an unexpected loop error
    error_backoff_seconds: float = 1.0
    # Skip self-termination (local runs, tests)
    terminate_self: bool = True

    @classmethod
    def from_env(cls) -> "CoordinatorDefaults":
        """Create from environment variables."""
        return cls(
            max_concurrent_handlers=int(os.getenv("MAX_CONCURRENT_HANDLERS", 32)),
            health_port=int(os.getenv("HEALTH_PORT", 8080)),
            drain_poll_seconds=float(os.getenv("DRAIN_POLL_SECONDS", 1.0)),
            error_backoff_seconds=float(os.getenv("ERROR_BACKOFF_SECONDS", 1.0)),
            terminate_self=_env_bool("TERMINATE_SELF", True),
        )


@dataclass(frozen=True)
class WorkerDefaults:
    """
    Defaults for analysis workers.
    """
    fetch_timeout_seconds: float = 60.0
    max_resource_bytes: int = 20 * 1024 * 1024  # 20 MB
    health_port: int = 8081
    # Comma-separated modules imported at startup to register analyzers
    analyzer_modules: str = "handlers.text"

    @classmethod
    def from_env(cls) -> "WorkerDefaults":
        """Create from environment variables."""
        return cls(
            fetch_timeout_seconds=float(os.getenv("FETCH_TIMEOUT_SECONDS", 60.0)),
            max_resource_bytes=int(os.getenv("MAX_RESOURCE_BYTES", 20 * 1024 * 1024)),
            health_port=int(os.getenv("WORKER_HEALTH_PORT", 8081)),
            analyzer_modules=os.getenv("ANALYZER_MODULES", "handlers.text"),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    queues: QueueDefaults = field(default_factory=QueueDefaults)
    fleet: FleetDefaults = field(default_factory=FleetDefaults)
    storage: StorageDefaults = field(default_factory=StorageDefaults)
    coordinator: CoordinatorDefaults = field(default_factory=CoordinatorDefaults)
    worker: WorkerDefaults = field(default_factory=WorkerDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            queues=QueueDefaults.from_env(),
            fleet=FleetDefaults.from_env(),
            storage=StorageDefaults.from_env(),
            coordinator=CoordinatorDefaults.from_env(),
            worker=WorkerDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "QueueDefaults",
    "InstanceTemplate",
    "FleetDefaults",
    "StorageDefaults",
    "CoordinatorDefaults",
    "WorkerDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
