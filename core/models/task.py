# ============================================================================
# CLAUDE CONTEXT - MESSAGE MODELS
# ============================================================================
# EPOCH: 1 - ELASTIC FAN-OUT
# STATUS: Core model - Job request, task message, result fragment
# PURPOSE: Define what travels on each queue and how it is encoded
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: JobRequest, TaskMessage, ResultFragment, MessageFormatError,
#          is_termination_request
# DEPENDENCIES: pydantic
# ============================================================================
"""
Message Models

Three payloads cross the queues:
- JobRequest:     submitter  -> coordinator (intake queue)
- TaskMessage:    coordinator -> worker     (task queue)
- ResultFragment: worker     -> coordinator (result queue)

All three are tab-delimited text on the wire. The models own both
directions of the encoding so every producer and consumer agrees.

Key insight: Tasks are DUMB. A worker does not know how many siblings
its task has or whether it is the last one. It executes and reports.
"""

from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from core.contracts import ERROR_PREFIX, FIELD_DELIMITER, JOB_REQUEST_TAG


class MessageFormatError(ValueError):
    """Raised when a queue message body does not match its wire format."""

    def __init__(self, message: str, body: Optional[str] = None):
        self.body = body
        super().__init__(message)


def _clean_field(value: str) -> str:
    """Collapse characters that would break the tab-delimited framing."""
    return " ".join(value.replace(FIELD_DELIMITER, " ").split())


def is_termination_request(body: str, sentinel: str) -> bool:
    """Check whether an intake message is the drain-and-terminate sentinel."""
    return body.strip() == sentinel


# ============================================================================
# JOB REQUEST
# ============================================================================

class JobRequest(BaseModel):
    """
    Job submission sent by the submitter.

    Wire format: TASK <tab> input_key <tab> n <tab> reply_address
    """

    input_key: str = Field(..., min_length=1, description="Blob key of the directive file")
    concurrency_hint: int = Field(..., ge=1, description="Tasks per worker (n)")
    reply_address: str = Field(..., min_length=1, description="Queue for the completion notice")

    model_config = {"frozen": True}

    def to_body(self) -> str:
        return FIELD_DELIMITER.join(
            [JOB_REQUEST_TAG, self.input_key, str(self.concurrency_hint), self.reply_address]
        )

    @classmethod
    def from_body(cls, body: str) -> "JobRequest":
        parts = body.strip().split(FIELD_DELIMITER)
        if len(parts) < 4 or parts[0] != JOB_REQUEST_TAG:
            raise MessageFormatError(
                f"Job request needs {JOB_REQUEST_TAG} and 3 fields, got {len(parts)} parts",
                body=body,
            )
        try:
            hint = int(parts[2])
        except ValueError:
            raise MessageFormatError(f"Concurrency hint is not an integer: {parts[2]!r}", body=body)

        try:
            return cls(input_key=parts[1], concurrency_hint=hint, reply_address=parts[3])
        except ValidationError as e:
            raise MessageFormatError(f"Invalid job request: {e}", body=body)


# ============================================================================
# TASK MESSAGE
# ============================================================================

class TaskMessage(BaseModel):
    """
    One analyzable item dispatched to the shared task queue.

    Wire format: analysis_kind <tab> resource_locator <tab> job_id <tab> task_id

    task_id is stable for a given job and input position, so a redelivered
    fan-out produces identical task ids and the registry can drop repeats.
    """

    analysis_kind: str = Field(..., min_length=1, max_length=64)
    resource_locator: str = Field(..., min_length=1)
    job_id: str = Field(..., min_length=1, max_length=64)
    task_id: Optional[str] = Field(default=None, max_length=128)

    model_config = {"frozen": True}

    @staticmethod
    def make_task_id(job_id: str, sequence: int) -> str:
        return f"{job_id}:{sequence:06d}"

    def to_body(self) -> str:
        fields = [self.analysis_kind, self.resource_locator, self.job_id]
        if self.task_id:
            fields.append(self.task_id)
        return FIELD_DELIMITER.join(fields)

    @classmethod
    def from_body(cls, body: str) -> "TaskMessage":
        parts = body.strip().split(FIELD_DELIMITER)
        if len(parts) not in (3, 4):
            raise MessageFormatError(f"Task message needs 3 or 4 fields, got {len(parts)}", body=body)
        try:
            return cls(
                analysis_kind=parts[0],
                resource_locator=parts[1],
                job_id=parts[2],
                task_id=parts[3] if len(parts) == 4 else None,
            )
        except ValidationError as e:
            raise MessageFormatError(f"Invalid task message: {e}", body=body)


# ============================================================================
# RESULT FRAGMENT
# ============================================================================

class ResultFragment(BaseModel):
    """
    One worker's outcome for one task.

    Wire format: job_id <tab> resource_locator <tab> outcome <tab> analysis_kind [<tab> task_id]

    outcome is the output blob locator on success, or an error
    description starting with ERROR_PREFIX. Both are terminal: an error
    fragment counts toward job completion like a success.
    """

    job_id: str = Field(..., min_length=1, max_length=64)
    resource_locator: str = Field(..., min_length=1)
    outcome: str = Field(..., min_length=1)
    analysis_kind: str = Field(..., min_length=1, max_length=64)
    task_id: Optional[str] = Field(default=None, max_length=128)

    model_config = {"frozen": True}

    @property
    def is_error(self) -> bool:
        return self.outcome.startswith(ERROR_PREFIX)

    def dedup_key(self, fallback: Optional[str] = None) -> str:
        """Key used to recognise a re-delivered fragment."""
        if self.task_id:
            return self.task_id
        if fallback:
            return fallback
        return FIELD_DELIMITER.join([self.analysis_kind, self.resource_locator, self.outcome])

    @classmethod
    def success(cls, task: TaskMessage, output_locator: str) -> "ResultFragment":
        return cls(
            job_id=task.job_id,
            resource_locator=task.resource_locator,
            outcome=output_locator,
            analysis_kind=task.analysis_kind,
            task_id=task.task_id,
        )

    @classmethod
    def failure(cls, task: TaskMessage, error: str) -> "ResultFragment":
        description = _clean_field(error) or "unknown error"
        return cls(
            job_id=task.job_id,
            resource_locator=task.resource_locator,
            outcome=f"{ERROR_PREFIX}{description}"[:2000],
            analysis_kind=task.analysis_kind,
            task_id=task.task_id,
        )

    def to_body(self) -> str:
        fields = [self.job_id, self.resource_locator, self.outcome, self.analysis_kind]
        if self.task_id:
            fields.append(self.task_id)
        return FIELD_DELIMITER.join(fields)

    @classmethod
    def from_body(cls, body: str) -> "ResultFragment":
        parts = body.strip().split(FIELD_DELIMITER)
        if len(parts) not in (4, 5):
            raise MessageFormatError(f"Result message needs 4 or 5 fields, got {len(parts)}", body=body)
        try:
            return cls(
                job_id=parts[0],
                resource_locator=parts[1],
                outcome=parts[2],
                analysis_kind=parts[3],
                task_id=parts[4] if len(parts) == 5 and parts[4] else None,
            )
        except ValidationError as e:
            raise MessageFormatError(f"Invalid result message: {e}", body=body)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "MessageFormatError",
    "JobRequest",
    "TaskMessage",
    "ResultFragment",
    "is_termination_request",
]
