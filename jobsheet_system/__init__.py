"""Job sheet workflow for a precious-metal workshop.

This package tracks issued gold and silver through the melting, rolling,
press, finishing (T+P+P) and packing stages, enforcing that no stage hands
back more metal than it received and booking scrap, dust and loss against
the job sheet.
"""

from .audit import AuditAction, AuditEntry
from .domain import (
    Employee,
    JobSheet,
    JobStatus,
    MetalType,
    ProductionStage,
    Purity,
    Step,
    StepLedger,
    StepStatus,
)
from .errors import ConflictError, JobSheetError, NotFoundError, ValidationError, WorkflowError
from .services import JobSheetService, TransitionOutcome, TransitionResult

__all__ = [
    "AuditAction",
    "AuditEntry",
    "Employee",
    "JobSheet",
    "JobStatus",
    "MetalType",
    "ProductionStage",
    "Purity",
    "Step",
    "StepLedger",
    "StepStatus",
    "JobSheetError",
    "ValidationError",
    "NotFoundError",
    "WorkflowError",
    "ConflictError",
    "JobSheetService",
    "TransitionOutcome",
    "TransitionResult",
]
