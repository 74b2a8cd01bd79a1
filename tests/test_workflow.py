import logging

import pytest

from jobsheet_system import (
    AuditAction,
    JobStatus,
    MetalType,
    NotFoundError,
    ProductionStage,
    Purity,
    StepStatus,
    TransitionOutcome,
    ValidationError,
    WorkflowError,
)


def _statuses(job):
    return [step.status for step in job.ledger]


def test_create_job_opens_first_stage(service, job, karigar):
    assert job.job_no == "JOB-1001"
    assert job.status is JobStatus.IN_PROGRESS
    assert job.current_stage is ProductionStage.MELTING
    assert job.current_step_name == "melting"
    assert job.metal_type is MetalType.GOLD
    assert job.purity is Purity.K22
    assert [step.stage_order for step in job.ledger] == [1, 2, 3, 4, 5]
    assert _statuses(job) == [StepStatus.IN_PROGRESS] + [StepStatus.PENDING] * 4

    melting = job.ledger.get(ProductionStage.MELTING)
    assert melting.issue_weight == 100.0
    assert melting.start_date == job.issue_date
    assert melting.worker_id == karigar.id
    assert all(step.issue_weight == 0 for step in job.steps[1:])
    assert job.total_loss == job.scrap_weight == job.dust_weight == 0.0

    history = service.audit_history(job.id)
    assert [entry.action for entry in history] == [AuditAction.CREATED]
    assert history[0].payload.issue_weight == 100.0
    assert len(history[0].payload.stages) == 5


def test_job_numbers_increment_from_last_issued(service, karigar):
    first = service.create_job(metal_type="gold", issue_weight=10, worker_id=karigar.id)
    second = service.create_job(metal_type="SILVER", issue_weight=10, worker_id=karigar.id)
    assert (first.job_no, second.job_no) == ("JOB-1001", "JOB-1002")
    assert second.metal_type is MetalType.SILVER

    service.create_job(metal_type="gold", issue_weight=5, job_no="JOB-1500")
    assert service.next_job_no() == "JOB-1501"


def test_create_job_rejects_duplicate_job_no(service, job):
    with pytest.raises(ValidationError, match="already been issued"):
        service.create_job(metal_type="gold", issue_weight=5, job_no=job.job_no)
    assert len(service.list_jobs()) == 1


@pytest.mark.parametrize("weight", [0, -1.5, float("nan"), "heavy"])
def test_create_job_requires_positive_issue_weight(service, weight):
    with pytest.raises(ValidationError):
        service.create_job(metal_type="gold", issue_weight=weight)
    assert service.list_jobs() == []


def test_create_job_checks_worker_and_enums(service):
    with pytest.raises(NotFoundError):
        service.create_job(metal_type="gold", issue_weight=5, worker_id="ghost")
    with pytest.raises(ValidationError, match="metal type"):
        service.create_job(metal_type="platinum", issue_weight=5)
    with pytest.raises(ValidationError, match="purity"):
        service.create_job(metal_type="gold", issue_weight=5, purity="18K")
    assert service.list_jobs() == []


def test_scenario_a_complete_first_stage(service, job):
    result = service.complete_current_stage(
        job.id, return_weight=90, scrap_weight=5, dust_weight=3
    )

    assert result.outcome is TransitionOutcome.APPLIED
    updated = result.job
    melting = updated.ledger.get(ProductionStage.MELTING)
    assert melting.status is StepStatus.COMPLETED
    assert melting.loss == pytest.approx(2.0)
    assert updated.total_loss == pytest.approx(2.0)
    assert updated.scrap_weight == pytest.approx(5.0)
    assert updated.dust_weight == pytest.approx(3.0)
    assert updated.status is JobStatus.IN_PROGRESS
    assert updated.last_return_weight == 90
    assert updated.current_stage is ProductionStage.MELTING
    assert updated.ledger.active() == []
    assert updated.ledger.get(ProductionStage.ROLLING).status is StepStatus.PENDING


def test_scenario_b_output_exceeding_input_is_rejected(service, job):
    with pytest.raises(ValidationError) as excinfo:
        service.complete_current_stage(
            job.id, return_weight=95, scrap_weight=5, dust_weight=3
        )

    assert "103.000g" in str(excinfo.value)
    assert "100.000g" in str(excinfo.value)
    unchanged = service.get_job(job.id)
    assert unchanged.revision == job.revision
    assert _statuses(unchanged) == _statuses(job)
    assert unchanged.total_loss == 0.0
    assert len(service.audit_history(job.id)) == 1


def test_output_equal_to_input_leaves_no_loss(service, job):
    result = service.complete_current_stage(
        job.id, return_weight=0.1 + 0.2, scrap_weight=99.7
    )
    assert result.job.total_loss == pytest.approx(0.0)


def test_scenario_c_next_stage_receives_hand_off(service, job):
    service.complete_current_stage(job.id, return_weight=90, scrap_weight=5, dust_weight=3)

    result = service.start_next_stage(job.id)

    rolling = result.job.ledger.get(ProductionStage.ROLLING)
    assert rolling.status is StepStatus.IN_PROGRESS
    assert rolling.issue_weight == 90
    assert rolling.start_date is not None
    assert result.job.current_stage is ProductionStage.ROLLING
    history = service.audit_history(job.id)
    assert history[-1].action is AuditAction.STEP_STARTED
    assert history[-1].payload.issue_weight == 90


def test_scenario_d_full_pipeline(service, job, five_stages):
    service.complete_current_stage(
        job.id, return_weight=90, scrap_weight=5, dust_weight=3
    )
    for returned, scrap, dust in five_stages[1:-1]:
        service.start_next_stage(job.id)
        service.complete_current_stage(
            job.id, return_weight=returned, scrap_weight=scrap, dust_weight=dust
        )
    service.start_next_stage(job.id)
    result = service.complete_current_stage(
        job.id, return_weight=80, scrap_weight=2, dust_weight=0.5, pieces=12, return_pieces=12
    )

    finished = result.job
    assert finished.status is JobStatus.COMPLETED
    assert finished.return_weight == 80
    assert finished.return_pieces == 12
    assert finished.completed_date is not None
    assert finished.current_stage is ProductionStage.PACKING
    assert all(status is StepStatus.COMPLETED for status in _statuses(finished))

    actions = [entry.action for entry in service.audit_history(job.id)]
    assert len(actions) == 10
    assert actions.count(AuditAction.CREATED) == 1
    assert actions.count(AuditAction.STEP_STARTED) == 4
    assert actions.count(AuditAction.STEP_COMPLETED) == 4
    assert actions.count(AuditAction.JOB_COMPLETED) == 1
    assert actions[-1] is AuditAction.JOB_COMPLETED


def test_scenario_e_completed_job_is_reported_not_mutated(service, job, drive, five_stages):
    finished = drive(service, job.id, five_stages).job
    history_before = service.audit_history(job.id)

    again = service.complete_current_stage(job.id, return_weight=1)
    restart = service.start_next_stage(job.id)

    for result in (again, restart):
        assert result.outcome is TransitionOutcome.ALREADY_COMPLETED
        assert not result.applied
        assert result.message == "Job already completed"
        assert result.job.revision == finished.revision
    assert service.audit_history(job.id) == history_before


def test_totals_match_completed_steps(service, job, five_stages):
    for count in range(1, len(five_stages) + 1):
        if count > 1:
            service.start_next_stage(job.id)
        returned, scrap, dust = five_stages[count - 1]
        current = service.complete_current_stage(
            job.id, return_weight=returned, scrap_weight=scrap, dust_weight=dust
        ).job

        completed = current.ledger.completed()
        assert len(completed) == count
        assert current.total_loss == pytest.approx(sum(step.loss for step in completed))
        assert current.scrap_weight == pytest.approx(sum(s.scrap_weight for s in completed))
        assert current.dust_weight == pytest.approx(sum(s.dust_weight for s in completed))
        for step in completed:
            assert step.total_output <= step.issue_weight
            assert step.loss == pytest.approx(step.issue_weight - step.total_output)
        assert len(current.ledger.active()) <= 1

    final = service.get_job(job.id)
    assert final.total_loss == pytest.approx(4.0)
    assert final.scrap_weight == pytest.approx(11.0)
    assert final.dust_weight == pytest.approx(5.0)


def test_chain_of_custody(service, job, drive, five_stages):
    finished = drive(service, job.id, five_stages).job
    steps = finished.steps
    assert steps[0].issue_weight == finished.issue_weight
    for previous, current in zip(steps, steps[1:]):
        assert current.issue_weight == previous.return_weight


def test_start_next_stage_while_stage_running(service, job):
    with pytest.raises(WorkflowError, match="still in progress"):
        service.start_next_stage(job.id)


def test_start_next_stage_without_completed_stage(service, job):
    broken = service.get_job(job.id)
    broken.ledger.get(ProductionStage.MELTING).status = StepStatus.PENDING
    service.jobs.commit(broken, [], expected_revision=broken.revision)

    with pytest.raises(WorkflowError, match="No completed stage"):
        service.start_next_stage(job.id)


def test_start_next_stage_after_last_stage(service, job):
    broken = service.get_job(job.id)
    for step in broken.ledger:
        step.status = StepStatus.COMPLETED
        step.return_weight = 90.0
    service.jobs.commit(broken, [], expected_revision=broken.revision)

    with pytest.raises(WorkflowError, match="No next stage"):
        service.start_next_stage(job.id)


def test_complete_without_active_stage(service, job):
    service.complete_current_stage(job.id, return_weight=90)
    revision = service.get_job(job.id).revision

    with pytest.raises(WorkflowError, match="No active stage"):
        service.complete_current_stage(job.id, return_weight=80)
    assert service.get_job(job.id).revision == revision


def test_complete_with_two_active_stages(service, job):
    broken = service.get_job(job.id)
    broken.ledger.get(ProductionStage.ROLLING).status = StepStatus.IN_PROGRESS
    service.jobs.commit(broken, [], expected_revision=broken.revision)

    with pytest.raises(WorkflowError, match="2 stages in progress"):
        service.complete_current_stage(job.id, return_weight=80)


def test_complete_with_incomplete_predecessor(service, job):
    broken = service.get_job(job.id)
    broken.ledger.get(ProductionStage.MELTING).status = StepStatus.PENDING
    broken.ledger.get(ProductionStage.ROLLING).status = StepStatus.IN_PROGRESS
    service.jobs.commit(broken, [], expected_revision=broken.revision)

    with pytest.raises(WorkflowError) as excinfo:
        service.complete_current_stage(job.id, return_weight=80)
    assert str(excinfo.value) == "Step 1 (melting) must be completed before step 2 (rolling)"


def test_unknown_job(service):
    with pytest.raises(NotFoundError):
        service.complete_current_stage("missing", return_weight=1)
    with pytest.raises(NotFoundError):
        service.start_next_stage("missing")
    with pytest.raises(NotFoundError):
        service.audit_history("missing")


@pytest.mark.parametrize(
    "figures",
    [
        {"return_weight": -1},
        {"return_weight": 10, "scrap_weight": -0.5},
        {"return_weight": 10, "dust_weight": float("inf")},
        {"return_weight": 10, "pieces": -1},
        {"return_weight": 10, "return_pieces": 2.5},
    ],
)
def test_malformed_completion_input(service, job, figures):
    with pytest.raises(ValidationError):
        service.complete_current_stage(job.id, **figures)
    assert service.get_job(job.id).revision == job.revision


def test_worker_override_and_notes(service, job):
    helper = service.register_employee("Kiran Patel")
    result = service.complete_current_stage(
        job.id, return_weight=90, worker_id=helper.id, notes="re-melted once"
    )
    melting = result.job.ledger.get(ProductionStage.MELTING)
    assert melting.worker_id == helper.id
    assert melting.notes == "re-melted once"
    assert service.audit_history(job.id)[-1].payload.worker_id == helper.id

    service.start_next_stage(job.id)
    with pytest.raises(NotFoundError):
        service.complete_current_stage(job.id, return_weight=80, worker_id="ghost")


def test_zero_return_weight_is_handed_off(service, job):
    service.complete_current_stage(job.id, return_weight=0, scrap_weight=100)
    rolling = service.start_next_stage(job.id).job.ledger.get(ProductionStage.ROLLING)
    assert rolling.issue_weight == 0


def test_hand_off_falls_back_to_carried_weight(service, job):
    service.complete_current_stage(job.id, return_weight=90)
    broken = service.get_job(job.id)
    broken.ledger.get(ProductionStage.MELTING).return_weight = None
    service.jobs.commit(broken, [], expected_revision=broken.revision)

    rolling = service.start_next_stage(job.id).job.ledger.get(ProductionStage.ROLLING)
    assert rolling.issue_weight == 90


def test_hand_off_prefers_stage_value(service, job, caplog):
    service.complete_current_stage(job.id, return_weight=90)
    broken = service.get_job(job.id)
    broken.last_return_weight = 70.0
    service.jobs.commit(broken, [], expected_revision=broken.revision)

    with caplog.at_level(logging.WARNING, logger="jobsheet_system.services"):
        rolling = service.start_next_stage(job.id).job.ledger.get(ProductionStage.ROLLING)

    assert rolling.issue_weight == 90
    assert "differs" in caplog.text


def test_list_jobs_filters(service, karigar, clock):
    other = service.register_employee("Kiran Patel")
    first = service.create_job(metal_type="gold", issue_weight=10, worker_id=karigar.id)
    second = service.create_job(metal_type="silver", issue_weight=20, worker_id=other.id)
    service.complete_current_stage(second.id, return_weight=20)
    for _ in range(4):
        service.start_next_stage(second.id)
        service.complete_current_stage(second.id, return_weight=20)

    assert [job.id for job in service.list_jobs()] == [second.id, first.id]
    assert [job.id for job in service.list_jobs(status="Completed")] == [second.id]
    assert [job.id for job in service.list_jobs(status=JobStatus.IN_PROGRESS)] == [first.id]
    assert [job.id for job in service.list_jobs(worker_id=other.id)] == [second.id]
    assert service.list_jobs(issued_since=clock.now) == []
    assert len(service.list_jobs(issued_since=clock.now.date())) == 2
    assert service.find_by_job_no(first.job_no).id == first.id
    with pytest.raises(NotFoundError):
        service.find_by_job_no("JOB-9999")


def test_register_employee_requires_name(service):
    with pytest.raises(ValidationError):
        service.register_employee("   ")


def test_completed_job_ignores_unknown_worker_override(service, job, drive, five_stages):
    finished = drive(service, job.id, five_stages).job

    again = service.complete_current_stage(job.id, return_weight=80, worker_id="retired")

    assert again.outcome is TransitionOutcome.ALREADY_COMPLETED
    assert again.job.revision == finished.revision


def test_unknown_job_ids_do_not_accumulate_locks(service, job):
    for index in range(50):
        with pytest.raises(NotFoundError):
            service.start_next_stage(f"bogus-{index}")
        with pytest.raises(NotFoundError):
            service.complete_current_stage(f"bogus-{index}", return_weight=1)

    service.complete_current_stage(job.id, return_weight=90)
    assert list(service._job_locks) == [job.id]


def test_output_within_tolerance_is_accepted_without_loss(service, job):
    result = service.complete_current_stage(
        job.id, return_weight=90, scrap_weight=10.0000005
    )
    melting = result.job.ledger.get(ProductionStage.MELTING)
    assert melting.loss == 0.0
    assert result.job.total_loss == 0.0

    other = service.create_job(metal_type="gold", issue_weight=100)
    with pytest.raises(ValidationError):
        service.complete_current_stage(other.id, return_weight=90, scrap_weight=10.00001)
