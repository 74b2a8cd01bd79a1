"""In-memory repositories used by the job sheet service layer."""

from __future__ import annotations

import copy
import threading
from typing import (
    Dict,
    Generic,
    Iterator,
    List,
    MutableMapping,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
)

from .audit import AuditEntry, AuditTrail
from .domain import JobSheet

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class StaleRevisionError(RepositoryError):
    """Raised when a commit was prepared against an outdated revision."""


class InMemoryRepository(Generic[T]):
    """Dictionary-backed repository for directory records such as employees."""

    def __init__(self) -> None:
        self._items: MutableMapping[str, T] = {}

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item_id: str, item: T) -> None:
        if item_id in self._items:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        self._items[item_id] = item

    def get(self, item_id: str) -> T:
        try:
            return self._items[item_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found") from exc

    def list(self) -> List[T]:
        return list(self._items.values())

    def __iter__(self) -> Iterator[T]:
        return iter(self._items.values())


class JobSheetStore(Protocol):
    """Persistence contract for job sheets and their audit trail.

    ``get`` and ``list`` hand out private copies; the only way to change
    stored state is ``commit``, which writes the job sheet (with its steps)
    and the audit entries together or not at all.
    """

    def __contains__(self, job_id: object) -> bool: ...

    def get(self, job_id: str) -> JobSheet: ...

    def list(self) -> List[JobSheet]: ...

    def job_numbers(self) -> List[str]: ...

    def commit(
        self,
        job: JobSheet,
        entries: Sequence[AuditEntry],
        *,
        expected_revision: Optional[int],
    ) -> JobSheet: ...

    def audit_entries(self, job_id: str) -> List[AuditEntry]: ...


class InMemoryJobSheetStore:
    """Dictionary-backed :class:`JobSheetStore`.

    ``expected_revision=None`` inserts a new job sheet; otherwise the stored
    revision must match or :class:`StaleRevisionError` is raised.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, JobSheet] = {}
        self._audit: Dict[str, AuditTrail] = {}
        self._lock = threading.Lock()

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def get(self, job_id: str) -> JobSheet:
        with self._lock:
            try:
                return copy.deepcopy(self._jobs[job_id])
            except KeyError as exc:
                raise RecordNotFoundError(f"Job sheet {job_id!r} not found") from exc

    def list(self) -> List[JobSheet]:
        with self._lock:
            return [copy.deepcopy(job) for job in self._jobs.values()]

    def job_numbers(self) -> List[str]:
        with self._lock:
            return [job.job_no for job in self._jobs.values()]

    def commit(
        self,
        job: JobSheet,
        entries: Sequence[AuditEntry],
        *,
        expected_revision: Optional[int],
    ) -> JobSheet:
        with self._lock:
            if expected_revision is None:
                if job.id in self._jobs:
                    raise DuplicateRecordError(f"Job sheet {job.id!r} already exists")
                if any(other.job_no == job.job_no for other in self._jobs.values()):
                    raise DuplicateRecordError(f"Job number {job.job_no!r} already issued")
            else:
                stored = self._jobs.get(job.id)
                if stored is None:
                    raise RecordNotFoundError(f"Job sheet {job.id!r} not found")
                if stored.revision != expected_revision:
                    raise StaleRevisionError(
                        f"Job sheet {job.id!r} is at revision {stored.revision}, "
                        f"expected {expected_revision}"
                    )
            committed = copy.deepcopy(job)
            committed.revision = 0 if expected_revision is None else expected_revision + 1
            self._jobs[job.id] = committed
            trail = self._audit.setdefault(job.id, AuditTrail())
            for entry in entries:
                trail.append(entry)
            return copy.deepcopy(committed)

    def audit_entries(self, job_id: str) -> List[AuditEntry]:
        with self._lock:
            trail = self._audit.get(job_id)
            return list(trail) if trail is not None else []


__all__ = [
    "InMemoryRepository",
    "InMemoryJobSheetStore",
    "JobSheetStore",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "StaleRevisionError",
]
