# ============================================================================
# WORKER EXECUTOR
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core - Task execution engine
# PURPOSE: Fetch a resource, analyze it, store the output
# CREATED: 19 OCT 2026
# ============================================================================
"""
Worker Executor

Turns one TaskMessage into one ResultFragment:

1. Fetch the resource over HTTP (redirects followed, size capped)
2. Run the analyzer registered for the task's kind
3. Upload the output under a key derived from the task id
4. Return a success fragment pointing at the output

Any failure in steps 1-2 becomes an error fragment ("Exception: ...").
Error fragments are terminal results; the coordinator counts them like
successes. A failure in step 3 propagates, so the task is not
acknowledged and another worker retries it. The output key is stable,
so a retry overwrites the same blob.
"""

import hashlib
import logging
import time
from typing import Optional

import httpx

from core.config import StorageDefaults
from core.contracts import FIELD_DELIMITER
from core.logging import log_context
from core.models import ResultFragment, TaskMessage
from handlers.registry import AnalysisContext, AnalyzerNotFoundError, run_analyzer
from infrastructure.base import BlobStore

logger = logging.getLogger(__name__)


class ResourceFetchError(Exception):
    """The task's resource could not be fetched."""


def output_name_for(task: TaskMessage) -> str:
    """Stable output name for a task, even when it carries no task id."""
    if task.task_id:
        return task.task_id
    digest = hashlib.sha1(
        FIELD_DELIMITER.join([task.analysis_kind, task.resource_locator]).encode("utf-8")
    ).hexdigest()
    return digest[:16]


class TaskExecutor:
    """
    Executes analysis tasks.

    Usage:
        async with httpx.AsyncClient() as http:
            executor = TaskExecutor(blobs, http, worker_id="worker-1")
            fragment = await executor.execute(task)
    """

    def __init__(
        self,
        blobs: BlobStore,
        http: httpx.AsyncClient,
        worker_id: str = "worker",
        storage: Optional[StorageDefaults] = None,
        fetch_timeout_seconds: float = 60.0,
        max_resource_bytes: int = 20 * 1024 * 1024,
    ):
        """
        Initialize executor.

        Args:
            blobs: Where analysis output is stored
            http: Shared HTTP client for resource fetches
            worker_id: Identifier for this worker (logging only)
            storage: Key layout (defaults to StorageDefaults())
            fetch_timeout_seconds: Per-fetch timeout
            max_resource_bytes: Larger resources fail the task
        """
        self.blobs = blobs
        self.http = http
        self.worker_id = worker_id
        self.storage = storage or StorageDefaults()
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.max_resource_bytes = max_resource_bytes

    async def fetch(self, locator: str) -> str:
        """
        Fetch a resource as text.

        Raises:
            ResourceFetchError: On HTTP errors, timeouts, or oversized bodies
        """
        try:
            async with self.http.stream(
                "GET",
                locator,
                follow_redirects=True,
                timeout=self.fetch_timeout_seconds,
            ) as response:
                response.raise_for_status()
                chunks = []
                size = 0
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > self.max_resource_bytes:
                        raise ResourceFetchError(
                            f"Resource exceeds {self.max_resource_bytes} bytes: {locator}"
                        )
                    chunks.append(chunk)
                encoding = response.encoding or "utf-8"
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ResourceFetchError(f"Fetching {locator} failed: {e}") from e

        return b"".join(chunks).decode(encoding, errors="replace")

    async def execute(self, task: TaskMessage) -> ResultFragment:
        """
        Execute a task.

        Returns:
            Success fragment with the output locator, or an error fragment

        Raises:
            InfrastructureError: The output could not be stored
        """
        start_time = time.time()

        with log_context(job_id=task.job_id, task_id=task.task_id, worker_id=self.worker_id):
            logger.info(f"Executing {task.analysis_kind} on {task.resource_locator}")

            try:
                text = await self.fetch(task.resource_locator)
                output = await run_analyzer(
                    AnalysisContext(task=task, text=text, worker_id=self.worker_id)
                )
            except ResourceFetchError as e:
                logger.warning(str(e))
                return ResultFragment.failure(task, str(e))
            except AnalyzerNotFoundError as e:
                logger.warning(str(e))
                return ResultFragment.failure(task, str(e))
            except Exception as e:
                logger.exception(f"Analyzer {task.analysis_kind} failed: {e}")
                return ResultFragment.failure(task, f"{type(e).__name__}: {e}")

            key = self.storage.task_output_key(task.job_id, output_name_for(task))
            locator = await self.blobs.put_text(key, output)

            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.info(f"Task done in {elapsed_ms}ms: {key}")
            return ResultFragment.success(task, locator)


__all__ = [
    "TaskExecutor",
    "ResourceFetchError",
    "output_name_for",
]
