"""Exception types raised by the job sheet workflow engine."""

from __future__ import annotations

from .repository import RecordNotFoundError


class JobSheetError(Exception):
    """Base class for all workflow failures.

    Every subclass carries a stable ``kind`` so outer layers can report the
    failure category without inspecting the class hierarchy.
    """

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(JobSheetError, ValueError):
    """Input is malformed or outside the allowed range."""

    kind = "validation"


class NotFoundError(JobSheetError, RecordNotFoundError):
    """A job sheet, stage or worker reference does not exist."""

    kind = "not_found"


class WorkflowError(JobSheetError):
    """A stage ordering or job state precondition was violated."""

    kind = "workflow"


class ConflictError(JobSheetError):
    """The job sheet changed underneath the caller."""

    kind = "conflict"


__all__ = [
    "JobSheetError",
    "ValidationError",
    "NotFoundError",
    "WorkflowError",
    "ConflictError",
]
