# ============================================================================
# TASK FAN-OUT
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Input splitting and task dispatch
# PURPOSE: Turn one directive file into N independent task messages
# CREATED: 19 OCT 2026
# ============================================================================
"""
Task Fan-Out

Splits a job's directive file into task messages.

Directive file format, one directive per line:

    KIND <tab> LOCATOR

Blank lines and lines missing either field are malformed; they are
skipped with a WARNING and do not count toward the job total.

Order of operations:
1. Fetch and parse the whole file (total is fixed here)
2. Register the job with that total
3. Push every task to the shared task queue
4. Ask the autoscaler for capacity

If any push fails the job is discarded and the error propagates, so the
intake message is redelivered. Job ids and task ids are derived from the
intake message and the directive position, so a repeated fan-out
produces the same ids and duplicate results are dropped downstream.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

from core.contracts import FIELD_DELIMITER
from core.logging import log_context
from core.models import TaskMessage
from infrastructure.base import BlobStore
from messaging import MessagePublisher
from orchestrator.autoscaler import AutoscalingController
from orchestrator.registry import JobRegistry

if TYPE_CHECKING:
    from orchestrator.aggregator import Finalizer

logger = logging.getLogger(__name__)


# ============================================================================
# PARSING
# ============================================================================

@dataclass(frozen=True)
class Directive:
    """One parsed line of a directive file."""
    line_number: int
    analysis_kind: str
    resource_locator: str


@dataclass
class ParseResult:
    """Accepted directives plus the line numbers that were skipped."""
    directives: List[Directive] = field(default_factory=list)
    skipped_lines: List[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.directives)


def parse_directive_line(line: str) -> Optional[Tuple[str, str]]:
    """
    Parse one directive line.

    Returns:
        (KIND, locator) or None when the line is malformed
    """
    if FIELD_DELIMITER not in line:
        return None
    fields = line.split(FIELD_DELIMITER)
    # Trailing fields are ignored
    kind = fields[0].strip().upper()
    locator = fields[1].strip()
    if not kind or not locator:
        return None
    return kind, locator


def parse_directives(text: str) -> ParseResult:
    """Parse a whole directive file, skipping malformed lines."""
    result = ParseResult()
    for line_number, line in enumerate(text.splitlines(), start=1):
        parsed = parse_directive_line(line)
        if parsed is None:
            if line.strip():
                logger.warning(f"Skipping malformed directive on line {line_number}: {line[:200]!r}")
            else:
                logger.warning(f"Skipping blank directive line {line_number}")
            result.skipped_lines.append(line_number)
            continue
        kind, locator = parsed
        result.directives.append(Directive(line_number, kind, locator))
    return result


# ============================================================================
# FAN-OUT
# ============================================================================

class TaskFanOut:
    """
    Splits job input into tasks and dispatches them.

    Usage:
        fan_out = TaskFanOut(registry, blobs, publisher, autoscaler, finalizer)
        total = await fan_out.split_and_dispatch(
            "input/abc/directives.txt", 3, "reply-queue", job_id
        )
    """

    def __init__(
        self,
        registry: JobRegistry,
        blobs: BlobStore,
        publisher: MessagePublisher,
        autoscaler: AutoscalingController,
        finalizer: Optional["Finalizer"] = None,
    ):
        self.registry = registry
        self.blobs = blobs
        self.publisher = publisher
        self.autoscaler = autoscaler
        self.finalizer = finalizer

    async def split_and_dispatch(
        self,
        input_key: str,
        concurrency_hint: int,
        reply_address: str,
        job_id: str,
    ) -> int:
        """
        Fan a job out.

        Args:
            input_key: Blob key of the directive file
            concurrency_hint: Tasks per worker (n >= 1)
            reply_address: Queue for the completion notice
            job_id: Stable job id for this request

        Returns:
            Number of tasks dispatched (the job total)

        Raises:
            InfrastructureError: Fetch or dispatch failed (job discarded)
        """
        if concurrency_hint < 1:
            raise ValueError(f"concurrency_hint must be >= 1, got {concurrency_hint}")

        with log_context(job_id=job_id, operation="fan_out"):
            if job_id in self.registry:
                # An earlier delivery of this request already fanned out
                total = self.registry.get(job_id).total_tasks
                logger.info(f"Job {job_id} already registered with {total} tasks; skipping fan-out")
                return total

            text = await self.blobs.get_text(input_key)
            parsed = parse_directives(text)
            total = parsed.total

            logger.info(
                f"Parsed {input_key}: {total} tasks, {len(parsed.skipped_lines)} skipped lines"
            )

            self.registry.create_job(reply_address, total, job_id=job_id)

            if total == 0:
                await self._finalize_empty(job_id)
                return 0

            try:
                for sequence, directive in enumerate(parsed.directives, start=1):
                    task = TaskMessage(
                        analysis_kind=directive.analysis_kind,
                        resource_locator=directive.resource_locator,
                        job_id=job_id,
                        task_id=TaskMessage.make_task_id(job_id, sequence),
                    )
                    await self.publisher.dispatch_task(task)
            except Exception:
                logger.error(f"Fan-out of job {job_id} failed after {sequence - 1}/{total} tasks")
                self.registry.discard(job_id)
                raise

            logger.info(f"Dispatched {total} tasks for job {job_id}")

            await self.autoscaler.ensure_capacity(total, concurrency_hint)
            return total

    async def _finalize_empty(self, job_id: str) -> None:
        """A job with no accepted directives completes at once."""
        logger.warning(f"Job {job_id} has no valid directives; finalizing with an empty report")
        if not self.registry.claim_if_complete(job_id):
            return
        if self.finalizer is None:
            self.registry.finalize(job_id)
            return
        try:
            await self.finalizer.finalize(job_id)
        except Exception:
            self.registry.discard(job_id)
            raise


__all__ = [
    "Directive",
    "ParseResult",
    "parse_directive_line",
    "parse_directives",
    "TaskFanOut",
]
