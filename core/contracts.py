# ============================================================================
# CLAUDE CONTEXT - BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Foundation - Core enums shared by coordinator and worker
# PURPOSE: Define lifecycle enums and wire-level constants
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: JobState, CoordinatorState, InstanceRole, InstanceState,
#          RecordOutcome, FIELD_DELIMITER, JOB_REQUEST_TAG, ERROR_PREFIX
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the analysis coordinator.

These values cross process boundaries:
- Queue messages (coordinator <-> worker <-> submitter)
- Compute tags (coordinator <-> fleet provisioner)
- Log records
"""

from enum import Enum


# ============================================================================
# WIRE CONSTANTS
# ============================================================================

FIELD_DELIMITER = "\t"
JOB_REQUEST_TAG = "TASK"

# Worker-reported failures are carried in the outcome field with this prefix
ERROR_PREFIX = "Exception: "


# ============================================================================
# STATUS ENUMS
# ============================================================================

class JobState(str, Enum):
    """
    Job lifecycle states.

    State transitions:
        ACTIVE -> COMPLETED (exactly once, when completed == total)
    """
    ACTIVE = "active"
    COMPLETED = "completed"


class CoordinatorState(str, Enum):
    """
    Coordinator process states.

    State transitions:
        RUNNING -> DRAINING -> TERMINATING -> STOPPED
    """
    RUNNING = "running"          # Accepting job requests
    DRAINING = "draining"        # Sentinel received, finishing open jobs
    TERMINATING = "terminating"  # Tearing down fleet, queues, self
    STOPPED = "stopped"          # Process may exit

    def accepts_jobs(self) -> bool:
        return self is CoordinatorState.RUNNING


class InstanceRole(str, Enum):
    """Role tag values for compute instances."""
    MANAGER = "Manager"
    WORKER = "Worker"


class InstanceState(str, Enum):
    """Normalized compute instance lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TERMINATED = "terminated"

    def is_active(self) -> bool:
        """Running or pending instances count toward fleet capacity."""
        return self in (InstanceState.PENDING, InstanceState.RUNNING)


class RecordOutcome(str, Enum):
    """Result of recording one fragment against the job registry."""
    RECORDED = "recorded"        # Counted, job still active
    COMPLETED = "completed"      # Counted (or re-claimed); caller must finalize
    DUPLICATE = "duplicate"      # Task key already recorded; not counted
    UNKNOWN_JOB = "unknown_job"  # No such job (never existed or finalized)

    @property
    def is_now_complete(self) -> bool:
        return self is RecordOutcome.COMPLETED


__all__ = [
    "FIELD_DELIMITER",
    "JOB_REQUEST_TAG",
    "ERROR_PREFIX",
    "JobState",
    "CoordinatorState",
    "InstanceRole",
    "InstanceState",
    "RecordOutcome",
]
