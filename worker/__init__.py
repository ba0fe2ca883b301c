# ============================================================================
# WORKER MODULE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Worker execution components
# PURPOSE: Task execution and task queue consumption
# CREATED: 19 OCT 2026
# ============================================================================
"""
Worker Module

Components for task execution on worker instances:
- contracts: Worker configuration
- executor: Fetch, analyze, store
- consumer: Task queue consumer
- main: Worker entry point
"""

from worker.contracts import WorkerConfig
from worker.executor import TaskExecutor, ResourceFetchError
from worker.consumer import TaskConsumer

__all__ = [
    "WorkerConfig",
    "TaskExecutor",
    "ResourceFetchError",
    "TaskConsumer",
]
