"""FastAPI-based JSON interface for the job sheet workflow."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..audit import AuditEntry
from ..config import Settings, configure_logging, get_settings
from ..domain import JobSheet, Step
from ..errors import JobSheetError
from ..reporting import (
    daily_loss_report,
    dashboard_summary,
    stage_loss_report,
    worker_loss_report,
)
from ..services import JobNumberSequence, JobSheetService, TransitionResult
from ..storage import JobSheetDatabase

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "validation": 400,
    "workflow": 400,
    "not_found": 404,
    "conflict": 409,
}


class EmployeeIn(BaseModel):
    name: str
    rate: float = 0.0


class JobSheetIn(BaseModel):
    metal_type: str
    issue_weight: float
    worker_id: Optional[str] = None
    size: str = ""
    purity: str = "22K"
    job_no: Optional[str] = None


class StageCompletionIn(BaseModel):
    return_weight: float
    scrap_weight: float = 0.0
    dust_weight: float = 0.0
    pieces: int = Field(default=0)
    return_pieces: int = Field(default=0)
    worker_id: Optional[str] = None
    notes: str = ""


def step_to_dict(step: Step) -> Dict[str, Any]:
    return {
        "stage": step.stage_name,
        "stage_order": step.stage_order,
        "label": step.stage.label,
        "status": step.status.value,
        "issue_weight": step.issue_weight,
        "return_weight": step.return_weight,
        "scrap_weight": step.scrap_weight,
        "dust_weight": step.dust_weight,
        "loss": step.loss,
        "pieces": step.pieces,
        "return_pieces": step.return_pieces,
        "start_date": step.start_date.isoformat() if step.start_date else None,
        "completed_date": step.completed_date.isoformat() if step.completed_date else None,
        "notes": step.notes,
        "worker_id": step.worker_id,
    }


def job_to_dict(job: JobSheet) -> Dict[str, Any]:
    return {
        "id": job.id,
        "job_no": job.job_no,
        "metal_type": job.metal_type.value,
        "purity": job.purity.value,
        "size": job.size,
        "worker_id": job.worker_id,
        "issue_weight": job.issue_weight,
        "status": job.status.value,
        "current_step": job.current_step_name,
        "total_loss": job.total_loss,
        "scrap_weight": job.scrap_weight,
        "dust_weight": job.dust_weight,
        "return_weight": job.return_weight,
        "return_pieces": job.return_pieces,
        "last_return_weight": job.last_return_weight,
        "issue_date": job.issue_date.isoformat(),
        "completed_date": job.completed_date.isoformat() if job.completed_date else None,
        "revision": job.revision,
        "steps": [step_to_dict(step) for step in job.ledger],
    }


def transition_to_dict(result: TransitionResult) -> Dict[str, Any]:
    return {
        "outcome": result.outcome.value,
        "message": result.message,
        "job": job_to_dict(result.job),
    }


def create_app(
    database_path: Optional[str] = None, settings: Optional[Settings] = None
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    database = JobSheetDatabase(database_path or settings.database_path)
    service = JobSheetService(
        job_repo=database.job_sheets,
        employee_repo=database.employees,
        sequence=JobNumberSequence(settings.job_no_prefix, settings.first_job_number),
    )
    if settings.seed_demo_data:
        ensure_demo_data(service)

    app = FastAPI(title=settings.app_name)
    app.state.jobsheet_service = service
    app.state.database = database

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        database.close()

    @app.exception_handler(JobSheetError)
    async def jobsheet_error_handler(request: Request, exc: JobSheetError) -> JSONResponse:
        status_code = ERROR_STATUS.get(exc.kind, 400)
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc)
        return JSONResponse(
            {"error": exc.kind, "detail": exc.message}, status_code=status_code
        )

    # ------------------------------------------------------------------
    # Worker directory
    # ------------------------------------------------------------------
    @app.get("/employees")
    async def list_employees(request: Request) -> List[Dict[str, Any]]:
        service: JobSheetService = request.app.state.jobsheet_service
        return [asdict(employee) for employee in service.employees.list()]

    @app.post("/employees", status_code=201)
    async def create_employee(payload: EmployeeIn, request: Request) -> Dict[str, Any]:
        service: JobSheetService = request.app.state.jobsheet_service
        employee = service.register_employee(payload.name, rate=payload.rate)
        return asdict(employee)

    # ------------------------------------------------------------------
    # Job sheets
    # ------------------------------------------------------------------
    @app.get("/jobsheets")
    async def list_jobsheets(
        request: Request,
        status: Optional[str] = None,
        worker_id: Optional[str] = None,
        since: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        service: JobSheetService = request.app.state.jobsheet_service
        jobs = service.list_jobs(status=status, worker_id=worker_id, issued_since=since)
        return [job_to_dict(job) for job in jobs]

    @app.get("/jobsheets/next-number")
    async def next_job_number(request: Request) -> Dict[str, str]:
        service: JobSheetService = request.app.state.jobsheet_service
        return {"job_no": service.next_job_no()}

    @app.post("/jobsheets", status_code=201)
    async def create_jobsheet(payload: JobSheetIn, request: Request) -> Dict[str, Any]:
        service: JobSheetService = request.app.state.jobsheet_service
        job = service.create_job(
            metal_type=payload.metal_type,
            issue_weight=payload.issue_weight,
            worker_id=payload.worker_id,
            size=payload.size,
            purity=payload.purity,
            job_no=payload.job_no,
        )
        return job_to_dict(job)

    @app.get("/jobsheets/{job_id}")
    async def view_jobsheet(job_id: str, request: Request) -> Dict[str, Any]:
        service: JobSheetService = request.app.state.jobsheet_service
        return job_to_dict(service.get_job(job_id))

    @app.get("/jobsheets/{job_id}/history")
    async def jobsheet_history(job_id: str, request: Request) -> List[Dict[str, Any]]:
        service: JobSheetService = request.app.state.jobsheet_service
        entries: List[AuditEntry] = service.audit_history(job_id)
        return [entry.to_dict() for entry in entries]

    @app.post("/jobsheets/{job_id}/complete-step")
    async def complete_step(
        job_id: str, payload: StageCompletionIn, request: Request
    ) -> Dict[str, Any]:
        service: JobSheetService = request.app.state.jobsheet_service
        result = service.complete_current_stage(
            job_id,
            return_weight=payload.return_weight,
            scrap_weight=payload.scrap_weight,
            dust_weight=payload.dust_weight,
            pieces=payload.pieces,
            return_pieces=payload.return_pieces,
            worker_id=payload.worker_id,
            notes=payload.notes,
        )
        return transition_to_dict(result)

    @app.post("/jobsheets/{job_id}/start-next-step")
    async def start_next_step(job_id: str, request: Request) -> Dict[str, Any]:
        service: JobSheetService = request.app.state.jobsheet_service
        return transition_to_dict(service.start_next_stage(job_id))

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    @app.get("/reports/dashboard")
    async def report_dashboard(request: Request) -> Dict[str, Any]:
        service: JobSheetService = request.app.state.jobsheet_service
        return asdict(dashboard_summary(service.jobs.list()))

    @app.get("/reports/workers")
    async def report_workers(request: Request) -> List[Dict[str, Any]]:
        service: JobSheetService = request.app.state.jobsheet_service
        rows = worker_loss_report(service.jobs.list(), service.employees.list())
        return [asdict(row) for row in rows]

    @app.get("/reports/daily")
    async def report_daily(request: Request) -> List[Dict[str, Any]]:
        service: JobSheetService = request.app.state.jobsheet_service
        return [
            {"date": row.day.isoformat(), "total_loss": row.total_loss, "job_count": row.job_count}
            for row in daily_loss_report(service.jobs.list())
        ]

    @app.get("/reports/stages")
    async def report_stages(request: Request) -> List[Dict[str, Any]]:
        service: JobSheetService = request.app.state.jobsheet_service
        return [
            {
                "stage": row.stage.stage_name,
                "stage_order": int(row.stage),
                "completed_count": row.completed_count,
                "issue_weight": row.issue_weight,
                "loss": row.loss,
                "scrap_weight": row.scrap_weight,
                "dust_weight": row.dust_weight,
                "loss_ratio": row.loss_ratio,
            }
            for row in stage_loss_report(service.jobs.list())
        ]

    return app


def ensure_demo_data(service: JobSheetService) -> None:
    """Register a couple of karigars so an empty workshop is usable."""

    if len(service.employees.list()) > 0:
        return
    for name, rate in (("Ramesh Soni", 450.0), ("Kiran Patel", 400.0)):
        service.register_employee(name, rate=rate)
