"""Core data structures for precious-metal job sheets."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Iterator, List, Optional


class MetalType(str, Enum):
    """Metal issued to a job sheet."""

    GOLD = "GOLD"
    SILVER = "SILVER"


class Purity(str, Enum):
    """Karat grade of the issued metal."""

    K22 = "22K"
    K24 = "24K"


class JobStatus(str, Enum):
    """Lifecycle of a job sheet."""

    IN_PROGRESS = "In-Progress"
    COMPLETED = "Completed"


class StepStatus(str, Enum):
    """Lifecycle of a single production stage."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class ProductionStage(IntEnum):
    """The fixed, ordered production pipeline.

    The integer value is the stage order and the only source of ordering.
    """

    MELTING = 1
    ROLLING = 2
    PRESS = 3
    FINISHING = 4
    PACKING = 5

    @property
    def stage_name(self) -> str:
        return self.name.lower()

    @property
    def label(self) -> str:
        return {
            ProductionStage.MELTING: "Melting",
            ProductionStage.ROLLING: "Rolling",
            ProductionStage.PRESS: "Press",
            ProductionStage.FINISHING: "T+P+P (Finishing)",
            ProductionStage.PACKING: "Packing",
        }[self]

    @property
    def is_final(self) -> bool:
        return self is ProductionStage.PACKING

    @classmethod
    def first(cls) -> "ProductionStage":
        return cls.MELTING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Employee:
    """A karigar (worker) that can be assigned to jobs and stages."""

    id: str
    name: str
    rate: float = 0.0


@dataclass(slots=True)
class Step:
    """One stage record of a job sheet."""

    stage: ProductionStage
    status: StepStatus = StepStatus.PENDING
    issue_weight: float = 0.0
    return_weight: Optional[float] = None
    scrap_weight: float = 0.0
    dust_weight: float = 0.0
    pieces: int = 0
    return_pieces: int = 0
    start_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    notes: str = ""
    worker_id: Optional[str] = None

    @property
    def stage_order(self) -> int:
        return int(self.stage)

    @property
    def stage_name(self) -> str:
        return self.stage.stage_name

    @property
    def total_output(self) -> float:
        return (self.return_weight or 0.0) + self.scrap_weight + self.dust_weight

    @property
    def loss(self) -> float:
        """Mass unaccounted for at this stage; zero until the stage completes."""

        if self.status is not StepStatus.COMPLETED:
            return 0.0
        return max(self.issue_weight - self.total_output, 0.0)


@dataclass(slots=True)
class StepLedger:
    """The five ordered stage records owned by one job sheet."""

    steps: List[Step] = field(default_factory=list)

    @classmethod
    def open(
        cls, issue_weight: float, worker_id: Optional[str], started_at: datetime
    ) -> "StepLedger":
        """Build a fresh ledger with the first stage already running."""

        steps = []
        for stage in ProductionStage:
            if stage is ProductionStage.first():
                steps.append(
                    Step(
                        stage=stage,
                        status=StepStatus.IN_PROGRESS,
                        issue_weight=issue_weight,
                        start_date=started_at,
                        worker_id=worker_id,
                    )
                )
            else:
                steps.append(Step(stage=stage, worker_id=worker_id))
        return cls(steps=steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(sorted(self.steps, key=lambda step: step.stage_order))

    def __len__(self) -> int:
        return len(self.steps)

    def get(self, stage: ProductionStage) -> Optional[Step]:
        for step in self.steps:
            if step.stage is stage:
                return step
        return None

    def active(self) -> List[Step]:
        return [step for step in self if step.status is StepStatus.IN_PROGRESS]

    def completed(self) -> List[Step]:
        return [step for step in self if step.status is StepStatus.COMPLETED]

    def last_completed(self) -> Optional[Step]:
        completed = self.completed()
        return completed[-1] if completed else None

    def first_incomplete_before(self, stage: ProductionStage) -> Optional[Step]:
        for step in self:
            if step.stage_order >= stage:
                break
            if step.status is not StepStatus.COMPLETED:
                return step
        return None

    def following(self, step: Step) -> Optional[Step]:
        if step.stage.is_final:
            return None
        return self.get(ProductionStage(step.stage_order + 1))

    # Sums over completed stages only.
    def total_loss(self) -> float:
        return sum(step.loss for step in self.completed())

    def total_scrap(self) -> float:
        return sum(step.scrap_weight for step in self.completed())

    def total_dust(self) -> float:
        return sum(step.dust_weight for step in self.completed())


@dataclass(slots=True)
class JobSheet:
    """An issued batch of metal tracked through the production pipeline."""

    id: str
    job_no: str
    metal_type: MetalType
    issue_weight: float
    worker_id: Optional[str]
    size: str = ""
    purity: Purity = Purity.K22
    status: JobStatus = JobStatus.IN_PROGRESS
    current_stage: ProductionStage = ProductionStage.MELTING
    ledger: StepLedger = field(default_factory=StepLedger)
    total_loss: float = 0.0
    scrap_weight: float = 0.0
    dust_weight: float = 0.0
    return_weight: Optional[float] = None
    return_pieces: Optional[int] = None
    last_return_weight: Optional[float] = None
    issue_date: datetime = field(default_factory=utcnow)
    completed_date: Optional[datetime] = None
    revision: int = 0

    @property
    def current_step_name(self) -> str:
        return self.current_stage.stage_name

    @property
    def is_completed(self) -> bool:
        return self.status is JobStatus.COMPLETED

    @property
    def steps(self) -> List[Step]:
        return list(self.ledger)


__all__ = [
    "MetalType",
    "Purity",
    "JobStatus",
    "StepStatus",
    "ProductionStage",
    "Employee",
    "Step",
    "StepLedger",
    "JobSheet",
    "utcnow",
]
