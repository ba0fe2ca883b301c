# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Job orchestration engine
# PURPOSE: Fan out jobs, scale the fleet, fan in results, shut down
# CREATED: 19 OCT 2026
# ============================================================================
"""
Orchestrator Module

The coordinator's job-orchestration engine.

Usage:
    from orchestrator import Coordinator

    coordinator = Coordinator(queues, blobs, fleet, get_defaults())
    await coordinator.run()  # Returns after teardown
"""

from .aggregator import Finalizer, ReportBuilder, ResultAggregator
from .autoscaler import AutoscalingController, compute_workers_to_create
from .fan_out import TaskFanOut, parse_directives
from .loop import Coordinator
from .pool import HandlerPool
from .registry import JobNotFoundError, JobRegistry
from .shutdown import ShutdownSequencer, TeardownReport

__all__ = [
    "Coordinator",
    "JobRegistry",
    "JobNotFoundError",
    "TaskFanOut",
    "parse_directives",
    "AutoscalingController",
    "compute_workers_to_create",
    "ReportBuilder",
    "Finalizer",
    "ResultAggregator",
    "ShutdownSequencer",
    "TeardownReport",
    "HandlerPool",
]
