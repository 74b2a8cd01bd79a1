"""Service layer that implements the job sheet workflow."""

from __future__ import annotations

import logging
import math
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Type, TypeVar, Union
from uuid import uuid4

from .audit import AuditEntry, completed_entry, created_entry, started_entry
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
    utcnow,
)
from .errors import ConflictError, NotFoundError, ValidationError, WorkflowError
from .repository import (
    DuplicateRecordError,
    InMemoryJobSheetStore,
    InMemoryRepository,
    JobSheetStore,
    RecordNotFoundError,
    StaleRevisionError,
)

logger = logging.getLogger(__name__)

# Absorbs float rounding when outputs are summed; one microgram.
WEIGHT_TOLERANCE = 1e-6

E = TypeVar("E", bound=Enum)


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_COMPLETED = "already_completed"


@dataclass(slots=True)
class TransitionResult:
    """Outcome of a stage transition request.

    A request against a finished job sheet is not an error: it comes back
    with ``ALREADY_COMPLETED`` and the untouched job sheet.
    """

    job: JobSheet
    outcome: TransitionOutcome = TransitionOutcome.APPLIED
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED


@dataclass(frozen=True, slots=True)
class StageCompletion:
    """Validated figures reported when a stage is handed back."""

    return_weight: float
    scrap_weight: float
    dust_weight: float
    pieces: int
    return_pieces: int
    worker_id: Optional[str]
    notes: str

    @property
    def total_output(self) -> float:
        return self.return_weight + self.scrap_weight + self.dust_weight


class JobNumberSequence:
    """Derives job numbers like ``JOB-1001`` from the numbers already issued."""

    def __init__(self, prefix: str = "JOB", first_number: int = 1001) -> None:
        self.prefix = prefix
        self.first_number = first_number
        self._pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")

    def number_of(self, job_no: str) -> Optional[int]:
        match = self._pattern.match(job_no.strip())
        return int(match.group(1)) if match else None

    def next_after(self, issued: Iterable[str]) -> str:
        numbers = [n for n in (self.number_of(job_no) for job_no in issued) if n is not None]
        next_number = max(numbers) + 1 if numbers else self.first_number
        return f"{self.prefix}-{next_number}"


def _as_weight(name: str, value: object, *, positive: bool = False) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        weight = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(weight):
        raise ValidationError(f"{name} must be a finite number")
    if positive and weight <= 0:
        raise ValidationError(f"{name} must be greater than zero")
    if weight < 0:
        raise ValidationError(f"{name} must not be negative")
    return weight


def _as_count(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f"{name} must be a whole number")
    try:
        count = int(value)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a whole number, got {value!r}") from exc
    if count < 0:
        raise ValidationError(f"{name} must not be negative")
    return count


def _as_enum(enum_type: Type[E], value: Union[E, str], label: str) -> E:
    if isinstance(value, enum_type):
        return value
    text = str(value).strip()
    for member in enum_type:
        if text.upper() in {member.name, str(member.value).upper()}:
            return member
    allowed = ", ".join(str(member.value) for member in enum_type)
    raise ValidationError(f"Unknown {label} {value!r}; expected one of {allowed}")


def _as_aware(moment: Union[date, datetime]) -> datetime:
    if not isinstance(moment, datetime):
        moment = datetime.combine(moment, time.min)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class JobSheetService:
    """Workflow engine that moves job sheets through the production stages.

    Every mutating call follows the same path: load a private copy of the job
    sheet, check preconditions, apply the transition to the copy and commit it
    together with its audit entry. Calls for the same job sheet are serialised
    by a per-job lock; the store's revision check rejects writers that bypass
    this service.
    """

    def __init__(
        self,
        job_repo: Optional[JobSheetStore] = None,
        employee_repo: Optional[InMemoryRepository[Employee]] = None,
        *,
        sequence: Optional[JobNumberSequence] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.jobs: JobSheetStore = job_repo if job_repo is not None else InMemoryJobSheetStore()
        self.employees = employee_repo if employee_repo is not None else InMemoryRepository()
        self.sequence = sequence or JobNumberSequence()
        self._clock = clock
        self._job_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._creation_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Worker directory
    # ------------------------------------------------------------------
    def register_employee(self, name: str, *, rate: float = 0.0) -> Employee:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Employee name must not be empty")
        employee = Employee(id=str(uuid4()), name=name, rate=_as_weight("rate", rate))
        self.employees.add(employee.id, employee)
        logger.info("Registered employee %s (%s)", employee.name, employee.id)
        return employee

    def _require_worker(self, worker_id: Optional[str]) -> None:
        if worker_id is not None and worker_id not in self.employees:
            raise NotFoundError(f"Employee {worker_id!r} does not exist")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_job(self, job_id: str) -> JobSheet:
        try:
            return self.jobs.get(job_id)
        except RecordNotFoundError as exc:
            raise NotFoundError(f"Job sheet {job_id!r} not found") from exc

    def find_by_job_no(self, job_no: str) -> JobSheet:
        for job in self.jobs.list():
            if job.job_no == job_no:
                return job
        raise NotFoundError(f"Job number {job_no!r} not found")

    def list_jobs(
        self,
        *,
        status: Optional[Union[JobStatus, str]] = None,
        worker_id: Optional[str] = None,
        issued_since: Optional[Union[date, datetime]] = None,
    ) -> List[JobSheet]:
        """Return job sheets newest first, optionally filtered."""

        wanted_status = _as_enum(JobStatus, status, "job status") if status else None
        since = _as_aware(issued_since) if issued_since is not None else None
        jobs = [
            job
            for job in self.jobs.list()
            if (wanted_status is None or job.status is wanted_status)
            and (worker_id is None or job.worker_id == worker_id)
            and (since is None or job.issue_date >= since)
        ]
        jobs.sort(key=lambda job: job.issue_date, reverse=True)
        return jobs

    def audit_history(self, job_id: str) -> List[AuditEntry]:
        if job_id not in self.jobs:
            raise NotFoundError(f"Job sheet {job_id!r} not found")
        return self.jobs.audit_entries(job_id)

    def next_job_no(self) -> str:
        return self.sequence.next_after(self.jobs.job_numbers())

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------
    def create_job(
        self,
        *,
        metal_type: Union[MetalType, str],
        issue_weight: float,
        worker_id: Optional[str] = None,
        size: str = "",
        purity: Union[Purity, str] = Purity.K22,
        job_no: Optional[str] = None,
    ) -> JobSheet:
        metal = _as_enum(MetalType, metal_type, "metal type")
        grade = _as_enum(Purity, purity, "purity")
        weight = _as_weight("Issue weight", issue_weight, positive=True)
        self._require_worker(worker_id)

        with self._creation_lock:
            issued = self.jobs.job_numbers()
            number = (job_no or "").strip() or self.sequence.next_after(issued)
            if number in issued:
                raise ValidationError(f"Job number {number!r} has already been issued")
            now = self._clock()
            job = JobSheet(
                id=str(uuid4()),
                job_no=number,
                metal_type=metal,
                purity=grade,
                issue_weight=weight,
                worker_id=worker_id,
                size=size or "",
                status=JobStatus.IN_PROGRESS,
                current_stage=ProductionStage.first(),
                ledger=StepLedger.open(weight, worker_id, now),
                issue_date=now,
            )
            committed = self._commit(job, [created_entry(job, now)], expected_revision=None)

        logger.info(
            "Issued job %s: %.3fg %s %s to worker %s",
            committed.job_no,
            committed.issue_weight,
            committed.purity.value,
            committed.metal_type.value,
            committed.worker_id,
        )
        return committed

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------
    def complete_current_stage(
        self,
        job_id: str,
        *,
        return_weight: float,
        scrap_weight: float = 0.0,
        dust_weight: float = 0.0,
        pieces: int = 0,
        return_pieces: int = 0,
        worker_id: Optional[str] = None,
        notes: str = "",
    ) -> TransitionResult:
        """Close the running stage and book its outputs against the job sheet.

        The next stage is not started; see :meth:`start_next_stage`.
        """

        completion = StageCompletion(
            return_weight=_as_weight("Return weight", return_weight),
            scrap_weight=_as_weight("Scrap weight", scrap_weight),
            dust_weight=_as_weight("Dust weight", dust_weight),
            pieces=_as_count("Pieces", pieces),
            return_pieces=_as_count("Return pieces", return_pieces),
            worker_id=worker_id or None,
            notes=notes or "",
        )
        with self._lock_for(job_id):
            job = self.get_job(job_id)
            if job.is_completed:
                return self._already_completed(job)
            self._require_worker(completion.worker_id)

            step = self._active_step(job)
            blocker = job.ledger.first_incomplete_before(step.stage)
            if blocker is not None:
                raise WorkflowError(
                    f"Step {blocker.stage_order} ({blocker.stage_name}) must be completed "
                    f"before step {step.stage_order} ({step.stage_name})"
                )
            if completion.total_output > step.issue_weight + WEIGHT_TOLERANCE:
                logger.warning(
                    "Rejected %s completion for job %s: output %.3fg > issue %.3fg",
                    step.stage_name,
                    job.job_no,
                    completion.total_output,
                    step.issue_weight,
                )
                raise ValidationError(
                    f"Total output ({completion.total_output:.3f}g) cannot exceed "
                    f"issue weight ({step.issue_weight:.3f}g)"
                )

            expected_revision = job.revision
            now = self._clock()
            self._close_step(job, step, completion, now)
            committed = self._commit(
                job, [completed_entry(job, step, now)], expected_revision=expected_revision
            )

        closed = committed.ledger.get(step.stage)
        assert closed is not None
        logger.info(
            "Job %s: %s completed, issue %.3fg, return %.3fg, loss %.3fg; job %s",
            committed.job_no,
            closed.stage_name,
            closed.issue_weight,
            closed.return_weight or 0.0,
            closed.loss,
            committed.status.value,
        )
        return TransitionResult(job=committed)

    def start_next_stage(self, job_id: str) -> TransitionResult:
        """Hand the last completed stage's return weight to the following stage."""

        with self._lock_for(job_id):
            job = self.get_job(job_id)
            if job.is_completed:
                return self._already_completed(job)

            running = job.ledger.active()
            if running:
                raise WorkflowError(
                    f"Stage {running[0].stage_name} of job {job.job_no} is still in progress"
                )
            previous = job.ledger.last_completed()
            if previous is None:
                raise WorkflowError(f"No completed stage found for job {job.job_no}")
            following = job.ledger.following(previous)
            if following is None or following.status is not StepStatus.PENDING:
                raise WorkflowError(f"No next stage available for job {job.job_no}")
            blocker = job.ledger.first_incomplete_before(following.stage)
            if blocker is not None:
                raise WorkflowError(
                    f"Step {blocker.stage_order} ({blocker.stage_name}) must be completed "
                    f"before step {following.stage_order} ({following.stage_name})"
                )

            expected_revision = job.revision
            now = self._clock()
            following.status = StepStatus.IN_PROGRESS
            following.issue_weight = self._handoff_weight(job, previous)
            following.start_date = now
            job.current_stage = following.stage
            committed = self._commit(
                job, [started_entry(job, following, now)], expected_revision=expected_revision
            )

        logger.info(
            "Job %s: %s started with %.3fg",
            committed.job_no,
            following.stage_name,
            following.issue_weight,
        )
        return TransitionResult(job=committed)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._job_locks.get(job_id)
            if lock is None:
                # Only issued job sheets get a lock; unknown ids never reach the map.
                if job_id not in self.jobs:
                    raise NotFoundError(f"Job sheet {job_id!r} not found")
                lock = self._job_locks[job_id] = threading.Lock()
            return lock

    @staticmethod
    def _already_completed(job: JobSheet) -> TransitionResult:
        logger.info("Job %s already completed; transition ignored", job.job_no)
        return TransitionResult(
            job=job,
            outcome=TransitionOutcome.ALREADY_COMPLETED,
            message="Job already completed",
        )

    @staticmethod
    def _active_step(job: JobSheet) -> Step:
        running = job.ledger.active()
        if len(running) != 1:
            raise WorkflowError(
                f"No active stage found for job sheet {job.job_no} "
                f"({len(running)} stages in progress)"
            )
        return running[0]

    @staticmethod
    def _close_step(
        job: JobSheet, step: Step, completion: StageCompletion, now: datetime
    ) -> None:
        step.return_weight = completion.return_weight
        step.scrap_weight = completion.scrap_weight
        step.dust_weight = completion.dust_weight
        step.pieces = completion.pieces
        step.return_pieces = completion.return_pieces
        step.notes = completion.notes
        step.worker_id = completion.worker_id or step.worker_id
        step.status = StepStatus.COMPLETED
        step.completed_date = now

        job.total_loss += step.loss
        job.scrap_weight += step.scrap_weight
        job.dust_weight += step.dust_weight

        if step.stage.is_final:
            job.status = JobStatus.COMPLETED
            job.completed_date = now
            job.return_weight = step.return_weight
            job.return_pieces = step.return_pieces
        else:
            job.last_return_weight = step.return_weight

    @staticmethod
    def _handoff_weight(job: JobSheet, previous: Step) -> float:
        carried = job.last_return_weight
        if previous.return_weight is None:
            if carried is None:
                raise WorkflowError(
                    f"Stage {previous.stage_name} of job {job.job_no} has no return weight to hand off"
                )
            return carried
        if carried is not None and abs(carried - previous.return_weight) > WEIGHT_TOLERANCE:
            logger.warning(
                "Job %s: carried hand-off %.3fg differs from %s return %.3fg; using stage value",
                job.job_no,
                carried,
                previous.stage_name,
                previous.return_weight,
            )
        return previous.return_weight

    def _commit(
        self,
        job: JobSheet,
        entries: Sequence[AuditEntry],
        *,
        expected_revision: Optional[int],
    ) -> JobSheet:
        try:
            return self.jobs.commit(job, entries, expected_revision=expected_revision)
        except StaleRevisionError as exc:
            logger.warning("Concurrent update rejected for job %s: %s", job.job_no, exc)
            raise ConflictError(
                f"Job sheet {job.job_no} was modified concurrently; reload and retry"
            ) from exc
        except DuplicateRecordError as exc:
            raise ValidationError(f"Job number {job.job_no!r} has already been issued") from exc
        except RecordNotFoundError as exc:
            raise NotFoundError(f"Job sheet {job.id!r} not found") from exc


__all__ = [
    "JobSheetService",
    "JobNumberSequence",
    "StageCompletion",
    "TransitionOutcome",
    "TransitionResult",
    "WEIGHT_TOLERANCE",
]
