from datetime import datetime, timedelta, timezone

import pytest

from jobsheet_system import JobSheetService, MetalType

START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class TickingClock:
    """Deterministic clock advancing one minute per reading."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(minutes=1)
        return current


@pytest.fixture()
def clock():
    return TickingClock()


@pytest.fixture()
def service(clock):
    return JobSheetService(clock=clock)


@pytest.fixture()
def karigar(service):
    return service.register_employee("Ramesh Soni", rate=450.0)


@pytest.fixture()
def job(service, karigar):
    return service.create_job(
        metal_type=MetalType.GOLD,
        issue_weight=100.0,
        worker_id=karigar.id,
        size="Bangle 2.6",
    )


def drive_to_completion(service, job_id, figures):
    """Complete every stage with the given (return, scrap, dust) figures."""

    result = None
    for index, (returned, scrap, dust) in enumerate(figures):
        if index:
            service.start_next_stage(job_id)
        result = service.complete_current_stage(
            job_id, return_weight=returned, scrap_weight=scrap, dust_weight=dust
        )
    return result


FIVE_STAGES = [
    (90.0, 5.0, 3.0),
    (88.0, 1.0, 0.5),
    (86.0, 1.0, 0.5),
    (83.0, 2.0, 0.5),
    (80.0, 2.0, 0.5),
]


@pytest.fixture()
def drive():
    return drive_to_completion


@pytest.fixture()
def five_stages():
    return list(FIVE_STAGES)
