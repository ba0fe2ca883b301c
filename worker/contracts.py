# ============================================================================
# WORKER CONTRACTS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Worker configuration
# PURPOSE: Gather everything a worker process needs from the environment
# CREATED: 19 OCT 2026
# ============================================================================
"""
Worker Contracts

Workers read tasks from the shared task queue and post results to the
result queue. The wire formats live in core.models.task; this module
holds the worker's own configuration.
"""

import os
import socket
from dataclasses import dataclass
from typing import Optional

from core.config import Defaults, get_defaults


@dataclass
class WorkerConfig:
    """Configuration for an analysis worker."""

    # Identity
    worker_id: str

    # Queues
    task_queue: str = "worker-tasks"
    result_queue: str = "worker-results"
    wait_seconds: int = 20

    # Fetching
    fetch_timeout_seconds: float = 60.0
    max_resource_bytes: int = 20 * 1024 * 1024

    # Analyzer loading
    analyzer_modules: str = "handlers.text"

    # Health server
    health_port: int = 8081

    # Sleep after an unexpected loop error
    error_backoff_seconds: float = 1.0

    @classmethod
    def from_env(cls, defaults: Optional[Defaults] = None) -> "WorkerConfig":
        """Create config from environment variables."""
        defaults = defaults or get_defaults()
        return cls(
            worker_id=os.getenv("WORKER_ID", f"worker-{socket.gethostname()}"),
            task_queue=defaults.queues.task_queue,
            result_queue=defaults.queues.result_queue,
            wait_seconds=defaults.queues.wait_seconds,
            fetch_timeout_seconds=defaults.worker.fetch_timeout_seconds,
            max_resource_bytes=defaults.worker.max_resource_bytes,
            analyzer_modules=defaults.worker.analyzer_modules,
            health_port=defaults.worker.health_port,
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "WorkerConfig",
]
