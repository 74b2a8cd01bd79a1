"""Append-only audit trail for job sheet state changes.

Every committed mutation of a job sheet produces exactly one
:class:`AuditEntry`. The payload is a frozen dataclass chosen by the action
kind, so consumers get a fixed field set per action instead of a loose blob.
Entries serialise to plain JSON-safe dictionaries with :meth:`AuditEntry.to_dict`
and can be rebuilt with :meth:`AuditEntry.from_dict` by a reporting layer.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, Union

from .domain import JobSheet, Step


class AuditAction(str, Enum):
    CREATED = "created"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    JOB_COMPLETED = "job_completed"


@dataclass(frozen=True, slots=True)
class StageSnapshot:
    stage: str
    stage_order: int
    status: str
    issue_weight: float


@dataclass(frozen=True, slots=True)
class JobCreatedPayload:
    """Full initial snapshot of a freshly issued job sheet."""

    job_no: str
    metal_type: str
    purity: str
    size: str
    issue_weight: float
    worker_id: Optional[str]
    status: str
    current_step: str
    stages: Tuple[StageSnapshot, ...]


@dataclass(frozen=True, slots=True)
class StepStartedPayload:
    step: str
    step_order: int
    issue_weight: float
    worker_id: Optional[str]


@dataclass(frozen=True, slots=True)
class StepCompletedPayload:
    """Delta recorded when an intermediate stage completes."""

    step: str
    step_order: int
    issue_weight: float
    return_weight: float
    scrap_weight: float
    dust_weight: float
    loss: float
    pieces: int
    return_pieces: int
    total_loss: float
    total_scrap_weight: float
    total_dust_weight: float
    worker_id: Optional[str]
    final_status: str


@dataclass(frozen=True, slots=True)
class JobCompletedPayload:
    """Delta recorded when packing completes and the job closes."""

    step: str
    step_order: int
    issue_weight: float
    return_weight: float
    scrap_weight: float
    dust_weight: float
    loss: float
    pieces: int
    return_pieces: int
    total_loss: float
    total_scrap_weight: float
    total_dust_weight: float
    worker_id: Optional[str]
    final_status: str
    completed_date: str


AuditPayload = Union[
    JobCreatedPayload, StepStartedPayload, StepCompletedPayload, JobCompletedPayload
]

PAYLOAD_TYPES: Dict[AuditAction, Type[Any]] = {
    AuditAction.CREATED: JobCreatedPayload,
    AuditAction.STEP_STARTED: StepStartedPayload,
    AuditAction.STEP_COMPLETED: StepCompletedPayload,
    AuditAction.JOB_COMPLETED: JobCompletedPayload,
}


@dataclass(frozen=True, slots=True)
class AuditEntry:
    job_id: str
    action: AuditAction
    payload: AuditPayload
    timestamp: datetime

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.action]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"Audit action {self.action.value!r} requires {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "action": self.action.value,
            "payload": asdict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        action = AuditAction(data["action"])
        payload_type = PAYLOAD_TYPES[action]
        raw = dict(data["payload"])
        if payload_type is JobCreatedPayload:
            raw["stages"] = tuple(StageSnapshot(**stage) for stage in raw["stages"])
        known = {item.name for item in fields(payload_type)}
        payload = payload_type(**{key: raw[key] for key in known})
        return cls(
            job_id=data["job_id"],
            action=action,
            payload=payload,
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class AuditTrail:
    """Chronological, append-only list of audit entries for one job."""

    def __init__(self, entries: Optional[List[AuditEntry]] = None) -> None:
        self._entries: List[AuditEntry] = list(entries or [])

    def append(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    def __iter__(self) -> Iterator[AuditEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def of_action(self, action: AuditAction) -> List[AuditEntry]:
        return [entry for entry in self._entries if entry.action is action]


# ----------------------------------------------------------------------
# Payload builders
# ----------------------------------------------------------------------
def created_entry(job: JobSheet, timestamp: datetime) -> AuditEntry:
    payload = JobCreatedPayload(
        job_no=job.job_no,
        metal_type=job.metal_type.value,
        purity=job.purity.value,
        size=job.size,
        issue_weight=job.issue_weight,
        worker_id=job.worker_id,
        status=job.status.value,
        current_step=job.current_step_name,
        stages=tuple(
            StageSnapshot(
                stage=step.stage_name,
                stage_order=step.stage_order,
                status=step.status.value,
                issue_weight=step.issue_weight,
            )
            for step in job.ledger
        ),
    )
    return AuditEntry(job.id, AuditAction.CREATED, payload, timestamp)


def started_entry(job: JobSheet, step: Step, timestamp: datetime) -> AuditEntry:
    payload = StepStartedPayload(
        step=step.stage_name,
        step_order=step.stage_order,
        issue_weight=step.issue_weight,
        worker_id=step.worker_id,
    )
    return AuditEntry(job.id, AuditAction.STEP_STARTED, payload, timestamp)


def completed_entry(job: JobSheet, step: Step, timestamp: datetime) -> AuditEntry:
    common = dict(
        step=step.stage_name,
        step_order=step.stage_order,
        issue_weight=step.issue_weight,
        return_weight=step.return_weight or 0.0,
        scrap_weight=step.scrap_weight,
        dust_weight=step.dust_weight,
        loss=step.loss,
        pieces=step.pieces,
        return_pieces=step.return_pieces,
        total_loss=job.total_loss,
        total_scrap_weight=job.scrap_weight,
        total_dust_weight=job.dust_weight,
        worker_id=step.worker_id,
        final_status=job.status.value,
    )
    if job.is_completed:
        assert job.completed_date is not None
        payload: AuditPayload = JobCompletedPayload(
            completed_date=job.completed_date.isoformat(), **common
        )
        return AuditEntry(job.id, AuditAction.JOB_COMPLETED, payload, timestamp)
    payload = StepCompletedPayload(**common)
    return AuditEntry(job.id, AuditAction.STEP_COMPLETED, payload, timestamp)


__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditPayload",
    "AuditTrail",
    "JobCreatedPayload",
    "StepStartedPayload",
    "StepCompletedPayload",
    "JobCompletedPayload",
    "StageSnapshot",
    "PAYLOAD_TYPES",
    "created_entry",
    "started_entry",
    "completed_entry",
]
