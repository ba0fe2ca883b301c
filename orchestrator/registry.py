# ============================================================================
# JOB REGISTRY
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - In-memory job lifecycle tracking
# PURPOSE: Count results per job and hand out exactly one finalization claim
# CREATED: 19 OCT 2026
# ============================================================================
"""
Job Registry

The only mutable state shared between the coordinator's handlers.

Each job entry carries its own lock; the entry table has a registry lock.
Recording a result is one atomic step under the entry lock:

    duplicate check -> append -> increment -> completion check

Completion is sealed inside that step (state = COMPLETED, finalizing =
True) so exactly one caller ever sees RecordOutcome.COMPLETED for a
given completion. That caller owns finalization:

    COMPLETED -> render + store report -> notify -> finalize(job_id)

If finalization fails the caller calls release_claim(job_id) and leaves
its message unacknowledged. When the queue redelivers that message its
fragment is already recorded, so record_result() sees a completed,
unclaimed job and hands the claim out again. finalize() removes the
entry, so no path can finalize a job twice.

All calls come from the event loop. Each method runs under a lock
without awaiting, so a mutation never interleaves with another handler.
"""

import logging
import threading
import uuid
from typing import Dict, List, Optional

from core.contracts import JobState, RecordOutcome
from core.logging import log_checkpoint
from core.models import Job, ResultFragment

logger = logging.getLogger(__name__)


class JobNotFoundError(KeyError):
    """Raised when an operation addresses a job that is not registered."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(job_id)

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class _JobEntry:
    """A job plus the lock that serializes mutation of it."""

    __slots__ = ("job", "lock")

    def __init__(self, job: Job):
        self.job = job
        self.lock = threading.Lock()


class JobRegistry:
    """
    Thread-safe registry of active jobs.

    Usage:
        registry = JobRegistry()
        job_id = registry.create_job("reply-queue", total_tasks=3)

        outcome = registry.record_result(job_id, fragment, dedup_key)
        if outcome.is_now_complete:
            job = registry.get(job_id)
            ...  # render report, notify
            registry.finalize(job_id)
    """

    def __init__(self):
        self._entries: Dict[str, _JobEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._entries

    def is_empty(self) -> bool:
        return len(self) == 0

    def active_job_ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def _entry(self, job_id: str) -> Optional[_JobEntry]:
        with self._lock:
            return self._entries.get(job_id)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def create_job(
        self,
        reply_address: str,
        total_tasks: int,
        job_id: Optional[str] = None,
    ) -> str:
        """
        Register a new ACTIVE job.

        Args:
            reply_address: Queue that receives the completion notice
            total_tasks: Number of tasks fanned out; fixed from here on
            job_id: Caller-chosen id (stable across redelivery); generated if omitted

        Returns:
            The job id

        Raises:
            ValueError: If total_tasks is negative or job_id is already registered
        """
        if total_tasks < 0:
            raise ValueError(f"total_tasks must be >= 0, got {total_tasks}")

        job_kwargs = {"reply_address": reply_address, "total_tasks": total_tasks}
        if job_id is not None:
            job_kwargs["job_id"] = job_id
        else:
            job_kwargs["job_id"] = uuid.uuid4().hex

        job = Job(**job_kwargs)

        with self._lock:
            if job.job_id in self._entries:
                raise ValueError(f"Job already registered: {job.job_id}")
            self._entries[job.job_id] = _JobEntry(job)

        log_checkpoint("job_created", {"job_id": job.job_id, "total_tasks": total_tasks})
        return job.job_id

    def record_result(
        self,
        job_id: str,
        fragment: ResultFragment,
        dedup_key: Optional[str] = None,
    ) -> RecordOutcome:
        """
        Record one result fragment against its job.

        Args:
            job_id: Target job
            fragment: The fragment to append
            dedup_key: Key identifying the task this fragment answers
                (defaults to fragment.dedup_key())

        Returns:
            RECORDED     counted, job still active
            COMPLETED    counted (or re-claimed); caller now owns finalization
            DUPLICATE    key already recorded or finalization in progress
            UNKNOWN_JOB  no such job; registry unchanged
        """
        entry = self._entry(job_id)
        if entry is None:
            return RecordOutcome.UNKNOWN_JOB

        key = dedup_key or fragment.dedup_key()

        with entry.lock:
            job = entry.job

            if job.state is JobState.COMPLETED:
                # Redelivery of a message whose finalization failed earlier
                if not job.finalizing:
                    job.finalizing = True
                    logger.info(f"Re-claiming finalization of job {job_id}")
                    return RecordOutcome.COMPLETED
                return RecordOutcome.DUPLICATE

            if job.has_recorded(key):
                return RecordOutcome.DUPLICATE

            job.add_fragment(fragment, key)

            if job.state is JobState.COMPLETED:
                job.finalizing = True
                log_checkpoint(
                    "job_completed",
                    {"job_id": job_id, "total_tasks": job.total_tasks},
                )
                return RecordOutcome.COMPLETED

            return RecordOutcome.RECORDED

    def claim_if_complete(self, job_id: str) -> bool:
        """
        Take the finalization claim of a job that is already complete.

        Used for jobs created with zero tasks, which never see a result.
        """
        entry = self._entry(job_id)
        if entry is None:
            return False
        with entry.lock:
            job = entry.job
            if job.is_complete and not job.finalizing:
                job.mark_completed()
                job.finalizing = True
                return True
            return False

    def release_claim(self, job_id: str) -> None:
        """Give up a finalization claim after a failed finalization."""
        entry = self._entry(job_id)
        if entry is None:
            return
        with entry.lock:
            entry.job.finalizing = False

    def finalize(self, job_id: str) -> Job:
        """
        Remove a completed job and return it.

        Raises:
            JobNotFoundError: If the job is not registered (e.g. already finalized)
            ValueError: If the job has not completed
        """
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                raise JobNotFoundError(job_id)
            with entry.lock:
                if entry.job.state is not JobState.COMPLETED:
                    raise ValueError(f"Job {job_id} is not completed")
                del self._entries[job_id]

        log_checkpoint("job_finalized", {"job_id": job_id})
        return entry.job

    def discard(self, job_id: str) -> None:
        """Drop a job whose fan-out failed. Missing jobs are ignored."""
        with self._lock:
            removed = self._entries.pop(job_id, None)
        if removed is not None:
            logger.warning(f"Discarded job {job_id}")

    def get(self, job_id: str) -> Job:
        """
        Snapshot of a registered job.

        Raises:
            JobNotFoundError: If the job is not registered
        """
        entry = self._entry(job_id)
        if entry is None:
            raise JobNotFoundError(job_id)
        with entry.lock:
            return entry.job.model_copy(deep=True)


__all__ = ["JobRegistry", "JobNotFoundError"]
