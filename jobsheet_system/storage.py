"""SQLite-backed persistence helpers for the job sheet system."""

from __future__ import annotations

import copy
import json
import pickle
import sqlite3
import threading
from typing import Iterator, List, Optional, Sequence

from .audit import AuditEntry
from .domain import Employee, JobSheet
from .repository import DuplicateRecordError, RecordNotFoundError, StaleRevisionError


class SQLiteEmployeeRepository:
    """Worker directory persisted as plain columns in SQLite."""

    def __init__(self, connection: sqlite3.Connection, lock: threading.RLock) -> None:
        self._connection = connection
        self._lock = lock
        with self._lock, self._connection:
            self._connection.execute(
                "CREATE TABLE IF NOT EXISTS employees ("
                "id TEXT PRIMARY KEY, name TEXT NOT NULL, rate REAL NOT NULL DEFAULT 0)"
            )

    def __contains__(self, employee_id: object) -> bool:
        if not isinstance(employee_id, str):
            return False
        with self._lock:
            cursor = self._connection.execute(
                "SELECT 1 FROM employees WHERE id = ? LIMIT 1", (employee_id,)
            )
            return cursor.fetchone() is not None

    def __iter__(self) -> Iterator[Employee]:
        return iter(self.list())

    def __len__(self) -> int:
        with self._lock:
            value = self._connection.execute("SELECT COUNT(1) FROM employees").fetchone()
        return int(value[0]) if value else 0

    def add(self, employee_id: str, employee: Employee) -> None:
        try:
            with self._lock, self._connection:
                self._connection.execute(
                    "INSERT INTO employees (id, name, rate) VALUES (?, ?, ?)",
                    (employee_id, employee.name, employee.rate),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(
                f"Employee with id {employee_id!r} already exists"
            ) from exc

    def get(self, employee_id: str) -> Employee:
        with self._lock:
            row = self._connection.execute(
                "SELECT id, name, rate FROM employees WHERE id = ?", (employee_id,)
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Employee with id {employee_id!r} not found")
        return Employee(id=row[0], name=row[1], rate=row[2])

    def list(self) -> List[Employee]:
        with self._lock:
            rows = self._connection.execute(
                "SELECT id, name, rate FROM employees ORDER BY name, id"
            ).fetchall()
        return [Employee(id=row[0], name=row[1], rate=row[2]) for row in rows]


class SQLiteJobSheetStore:
    """Job sheet store writing the aggregate and its audit rows in one transaction.

    The job sheet (including its five steps) is pickled into a single row
    alongside its revision. Audit entries are stored as JSON so other tools
    can read the history without importing this package.
    """

    def __init__(self, connection: sqlite3.Connection, lock: threading.RLock) -> None:
        self._connection = connection
        self._lock = lock
        with self._lock:
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS job_sheets (
                    id TEXT PRIMARY KEY,
                    job_no TEXT NOT NULL UNIQUE,
                    revision INTEGER NOT NULL,
                    issue_date TEXT NOT NULL,
                    payload BLOB NOT NULL
                );
                CREATE TABLE IF NOT EXISTS audit_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL REFERENCES job_sheets(id),
                    action TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS ix_audit_entries_job
                    ON audit_entries (job_id, id);
                """
            )

    def __contains__(self, job_id: object) -> bool:
        if not isinstance(job_id, str):
            return False
        with self._lock:
            cursor = self._connection.execute(
                "SELECT 1 FROM job_sheets WHERE id = ? LIMIT 1", (job_id,)
            )
            return cursor.fetchone() is not None

    def get(self, job_id: str) -> JobSheet:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT payload, revision FROM job_sheets WHERE id = ?", (job_id,)
            )
            row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"Job sheet {job_id!r} not found")
        return self._load(row[0], row[1])

    def list(self) -> List[JobSheet]:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT payload, revision FROM job_sheets ORDER BY issue_date, job_no"
            )
            rows = cursor.fetchall()
        return [self._load(row[0], row[1]) for row in rows]

    def job_numbers(self) -> List[str]:
        with self._lock:
            cursor = self._connection.execute("SELECT job_no FROM job_sheets")
            return [row[0] for row in cursor.fetchall()]

    def commit(
        self,
        job: JobSheet,
        entries: Sequence[AuditEntry],
        *,
        expected_revision: Optional[int],
    ) -> JobSheet:
        committed = copy.deepcopy(job)
        committed.revision = 0 if expected_revision is None else expected_revision + 1
        payload = pickle.dumps(committed)
        with self._lock, self._connection:
            if expected_revision is None:
                self._insert(committed, payload)
            else:
                self._update(committed, payload, expected_revision)
            self._connection.executemany(
                "INSERT INTO audit_entries (job_id, action, payload, timestamp) "
                "VALUES (?, ?, ?, ?)",
                [
                    (
                        entry.job_id,
                        entry.action.value,
                        json.dumps(entry.to_dict()["payload"]),
                        entry.timestamp.isoformat(),
                    )
                    for entry in entries
                ],
            )
        return self._load(payload, committed.revision)

    def audit_entries(self, job_id: str) -> List[AuditEntry]:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT job_id, action, payload, timestamp FROM audit_entries "
                "WHERE job_id = ? ORDER BY id",
                (job_id,),
            )
            rows = cursor.fetchall()
        return [
            AuditEntry.from_dict(
                {
                    "job_id": row[0],
                    "action": row[1],
                    "payload": json.loads(row[2]),
                    "timestamp": row[3],
                }
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _insert(self, job: JobSheet, payload: bytes) -> None:
        try:
            self._connection.execute(
                "INSERT INTO job_sheets (id, job_no, revision, issue_date, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                (job.id, job.job_no, job.revision, job.issue_date.isoformat(), payload),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(
                f"Job sheet {job.id!r} / {job.job_no!r} already exists"
            ) from exc

    def _update(self, job: JobSheet, payload: bytes, expected_revision: int) -> None:
        cursor = self._connection.execute(
            "UPDATE job_sheets SET revision = ?, payload = ? WHERE id = ? AND revision = ?",
            (job.revision, payload, job.id, expected_revision),
        )
        if cursor.rowcount == 1:
            return
        current = self._connection.execute(
            "SELECT revision FROM job_sheets WHERE id = ?", (job.id,)
        ).fetchone()
        if current is None:
            raise RecordNotFoundError(f"Job sheet {job.id!r} not found")
        raise StaleRevisionError(
            f"Job sheet {job.id!r} is at revision {current[0]}, expected {expected_revision}"
        )

    @staticmethod
    def _load(payload: bytes, revision: int) -> JobSheet:
        job: JobSheet = pickle.loads(payload)
        job.revision = revision
        return job


class JobSheetDatabase:
    """Convenience facade bundling the SQLite stores of the workshop."""

    def __init__(self, path: str) -> None:
        connection = sqlite3.connect(path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        self._connection = connection
        self._lock = threading.RLock()
        self.employees = SQLiteEmployeeRepository(connection, self._lock)
        self.job_sheets = SQLiteJobSheetStore(connection, self._lock)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "JobSheetDatabase":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:
        self.close()


__all__ = ["SQLiteEmployeeRepository", "SQLiteJobSheetStore", "JobSheetDatabase"]
