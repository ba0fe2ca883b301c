# ============================================================================
# CLAUDE CONTEXT - CORE MODULE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core module initialization
# PURPOSE: Export core contracts and models
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================

from core.contracts import (
    JobState,
    CoordinatorState,
    InstanceRole,
    InstanceState,
    RecordOutcome,
)
from core.models import (
    Job,
    JobRequest,
    TaskMessage,
    ResultFragment,
    MessageFormatError,
)

__all__ = [
    # Enums
    "JobState",
    "CoordinatorState",
    "InstanceRole",
    "InstanceState",
    "RecordOutcome",
    # Models
    "Job",
    "JobRequest",
    "TaskMessage",
    "ResultFragment",
    "MessageFormatError",
]
