# ============================================================================
# CLAUDE CONTEXT - MODELS MODULE
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Pydantic models shared by the coordinator, the worker and the submitter.
"""

from core.models.task import (
    JobRequest,
    TaskMessage,
    ResultFragment,
    MessageFormatError,
    is_termination_request,
)
from core.models.job import Job

__all__ = [
    # Messages
    "JobRequest",
    "TaskMessage",
    "ResultFragment",
    "MessageFormatError",
    "is_termination_request",
    # Job
    "Job",
]
