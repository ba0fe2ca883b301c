# ============================================================================
# CLAUDE CONTEXT - JOB MODEL
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core model - One submitted unit of work
# PURPOSE: Track fan-in progress of one job inside the coordinator
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: Job
# DEPENDENCIES: pydantic
# ============================================================================
"""
Job Model

A Job is one submitted batch of analysis work. The coordinator creates
it when the input has been split, and it lives in the job registry until
every task has reported and the report has been delivered.

The model itself is not thread-safe. All mutation goes through
orchestrator.registry.JobRegistry, which serializes access per job.
"""

from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel, Field, computed_field, model_validator

from core.contracts import JobState
from core.models.task import ResultFragment


class Job(BaseModel):
    """
    A job instance.

    Lifecycle:
        1. Created ACTIVE with total_tasks fixed
        2. Each distinct fragment increments completed_tasks
        3. Transitions to COMPLETED when completed_tasks == total_tasks
        4. Removed from the registry by finalize()
    """

    job_id: str = Field(..., min_length=1, max_length=64)
    reply_address: str = Field(..., min_length=1)
    total_tasks: int = Field(..., ge=0)
    completed_tasks: int = Field(default=0, ge=0)
    state: JobState = Field(default=JobState.ACTIVE)

    # Append-only, arrival order (not meaningful)
    results: List[ResultFragment] = Field(default_factory=list)

    # Dedup keys of fragments already counted
    recorded_keys: Set[str] = Field(default_factory=set)

    # Set while one caller owns finalization of a COMPLETED job
    finalizing: bool = Field(default=False)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    @model_validator(mode="after")
    def _check_counts(self) -> "Job":
        if self.completed_tasks > self.total_tasks:
            raise ValueError(
                f"completed_tasks ({self.completed_tasks}) exceeds total_tasks ({self.total_tasks})"
            )
        return self

    @computed_field
    @property
    def is_complete(self) -> bool:
        return self.completed_tasks >= self.total_tasks

    @computed_field
    @property
    def remaining_tasks(self) -> int:
        return self.total_tasks - self.completed_tasks

    def has_recorded(self, key: str) -> bool:
        return key in self.recorded_keys

    def add_fragment(self, fragment: ResultFragment, key: str) -> None:
        """Append a fragment and count it. Caller checks duplicates first."""
        if self.state is JobState.COMPLETED:
            raise ValueError(f"Job {self.job_id} is already completed")
        self.results.append(fragment)
        self.recorded_keys.add(key)
        self.completed_tasks += 1
        if self.is_complete:
            self.mark_completed()

    def mark_completed(self) -> None:
        if self.state is JobState.COMPLETED:
            return
        self.state = JobState.COMPLETED
        self.completed_at = datetime.utcnow()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Job"]
