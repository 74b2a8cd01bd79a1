"""Demonstration script for the job sheet workflow."""

from __future__ import annotations

from pprint import pprint

from . import JobSheetService, MetalType, ValidationError
from .reporting import dashboard_summary, stage_loss_report

# (return, scrap, dust, pieces, return pieces) reported at the end of each stage
STAGE_FIGURES = [
    (90.0, 5.0, 3.0, 0, 0),
    (88.5, 1.0, 0.3, 0, 0),
    (86.0, 2.0, 0.2, 14, 14),
    (82.0, 3.0, 0.6, 14, 12),
    (80.0, 1.5, 0.2, 12, 12),
]


def main() -> None:
    workshop = JobSheetService()

    karigar = workshop.register_employee("Ramesh Soni", rate=450.0)

    job = workshop.create_job(
        metal_type=MetalType.GOLD,
        issue_weight=100.0,
        worker_id=karigar.id,
        size="Bangle 2.6",
    )
    print(f"Issued {job.job_no}: {job.issue_weight:.3f}g, stage {job.current_step_name}")

    try:
        workshop.complete_current_stage(
            job.id, return_weight=95.0, scrap_weight=5.0, dust_weight=3.0
        )
    except ValidationError as exc:
        print(f"Rejected: {exc}")

    for index, (returned, scrap, dust, pieces, return_pieces) in enumerate(STAGE_FIGURES):
        if index:
            workshop.start_next_stage(job.id)
        result = workshop.complete_current_stage(
            job.id,
            return_weight=returned,
            scrap_weight=scrap,
            dust_weight=dust,
            pieces=pieces,
            return_pieces=return_pieces,
        )
        job = result.job
        print(
            f"  {job.current_step_name:<10} loss so far {job.total_loss:.3f}g "
            f"(scrap {job.scrap_weight:.3f}g, dust {job.dust_weight:.3f}g)"
        )

    print(f"{job.job_no} {job.status.value}: returned {job.return_weight:.3f}g, "
          f"{job.return_pieces} pieces")
    print(workshop.complete_current_stage(job.id, return_weight=1.0).message)

    print("\nAudit trail:")
    for entry in workshop.audit_history(job.id):
        print(f"  {entry.timestamp:%H:%M:%S} {entry.action.value}")

    print("\nDashboard:")
    pprint(dashboard_summary(workshop.jobs.list()))
    print("\nLoss by stage:")
    for row in stage_loss_report(workshop.jobs.list()):
        print(f"  {row.stage.label:<18} {row.loss:.3f}g ({row.loss_ratio:.2%})")


if __name__ == "__main__":
    main()
