"""Read-only projections over job sheets for dashboards and loss reports."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Dict, Iterable, List, Optional

from .domain import Employee, JobSheet, JobStatus, ProductionStage, StepStatus

DAILY_REPORT_DAYS = 30


@dataclass(slots=True)
class DashboardSummary:
    total_issued: float
    total_returned: float
    total_scrap: float
    total_dust: float
    loss_today: float
    loss_month: float
    scrap_month: float
    dust_month: float
    pending_count: int


@dataclass(slots=True)
class WorkerLoss:
    worker_id: Optional[str]
    name: str
    total_loss: float
    job_count: int


@dataclass(slots=True)
class StageLoss:
    stage: ProductionStage
    completed_count: int
    issue_weight: float
    loss: float
    scrap_weight: float
    dust_weight: float

    @property
    def loss_ratio(self) -> float:
        return self.loss / self.issue_weight if self.issue_weight else 0.0


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def dashboard_summary(jobs: Iterable[JobSheet], today: Optional[date] = None) -> DashboardSummary:
    """Totals for the workshop dashboard.

    Period figures are bucketed by the job's issue date, in UTC.
    """

    today = today or datetime.now(timezone.utc).date()
    day_start = _start_of(today)
    month_start = _start_of(today.replace(day=1))
    summary = DashboardSummary(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0)
    for job in jobs:
        summary.total_issued += job.issue_weight
        summary.total_returned += job.return_weight or 0.0
        summary.total_scrap += job.scrap_weight
        summary.total_dust += job.dust_weight
        if job.issue_date >= day_start:
            summary.loss_today += job.total_loss
        if job.issue_date >= month_start:
            summary.loss_month += job.total_loss
            summary.scrap_month += job.scrap_weight
            summary.dust_month += job.dust_weight
        if job.status is JobStatus.IN_PROGRESS:
            summary.pending_count += 1
    return summary


def worker_loss_report(
    jobs: Iterable[JobSheet], employees: Iterable[Employee]
) -> List[WorkerLoss]:
    """Loss per assigned karigar, highest loss first."""

    names = {employee.id: employee.name for employee in employees}
    totals: Dict[Optional[str], List[float]] = defaultdict(lambda: [0.0, 0])
    for job in jobs:
        bucket = totals[job.worker_id]
        bucket[0] += job.total_loss
        bucket[1] += 1
    report = [
        WorkerLoss(
            worker_id=worker_id,
            name=names.get(worker_id, "Unassigned") if worker_id else "Unassigned",
            total_loss=loss,
            job_count=int(count),
        )
        for worker_id, (loss, count) in totals.items()
    ]
    report.sort(key=lambda row: (-row.total_loss, row.name))
    return report


def stage_loss_report(jobs: Iterable[JobSheet]) -> List[StageLoss]:
    rows = {stage: StageLoss(stage, 0, 0.0, 0.0, 0.0, 0.0) for stage in ProductionStage}
    for job in jobs:
        for step in job.ledger:
            if step.status is not StepStatus.COMPLETED:
                continue
            row = rows[step.stage]
            row.completed_count += 1
            row.issue_weight += step.issue_weight
            row.loss += step.loss
            row.scrap_weight += step.scrap_weight
            row.dust_weight += step.dust_weight
    return [rows[stage] for stage in ProductionStage]


@dataclass(slots=True)
class DailyLoss:
    day: date
    total_loss: float
    job_count: int


def _start_of_previous_month(today: date) -> date:
    if today.month == 1:
        return date(today.year - 1, 12, 1)
    return date(today.year, today.month - 1, 1)


def daily_loss_report(
    jobs: Iterable[JobSheet], today: Optional[date] = None, *, limit: int = DAILY_REPORT_DAYS
) -> List[DailyLoss]:
    """Loss and job count per issue day since the start of last month, newest first."""

    today = today or datetime.now(timezone.utc).date()
    since = _start_of(_start_of_previous_month(today))
    rows: Dict[date, DailyLoss] = {}
    for job in jobs:
        if job.issue_date < since:
            continue
        day = job.issue_date.astimezone(timezone.utc).date()
        row = rows.setdefault(day, DailyLoss(day, 0.0, 0))
        row.total_loss += job.total_loss
        row.job_count += 1
    return sorted(rows.values(), key=lambda row: row.day, reverse=True)[:limit]


__all__ = [
    "DashboardSummary",
    "WorkerLoss",
    "StageLoss",
    "DailyLoss",
    "dashboard_summary",
    "worker_loss_report",
    "stage_loss_report",
    "daily_loss_report",
]
