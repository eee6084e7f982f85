"""Models for batch generation jobs."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from models.generation import GenerationRequest, ItemStatus, PipelineResult


class BatchState(str, Enum):
    """Run state of a batch job."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class BatchJob:
    """Ordered requests plus one PipelineResult per request.

    Mutated only by the orchestrator task driving it.
    """

    job_id: str
    requests: list[GenerationRequest]
    state: BatchState = BatchState.IDLE
    results: list[PipelineResult] = field(default_factory=list)
    previous_attempts: dict[int, list[PipelineResult]] = field(default_factory=dict)
    current_index: Optional[int] = None
    halt_reason: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.results:
            self.results = [
                PipelineResult(index=i, request=request)
                for i, request in enumerate(self.requests)
            ]

    @property
    def total(self) -> int:
        return len(self.requests)

    @property
    def completed_count(self) -> int:
        """Items that were attempted and finished (success or error)."""
        return sum(1 for r in self.results if r.is_finished)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.status == ItemStatus.SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.status == ItemStatus.ERROR)

    def progress(self) -> "BatchProgress":
        current = None
        if self.current_index is not None:
            running = self.results[self.current_index]
            current = {
                "index": self.current_index,
                "title": running.request.title,
                "status": running.status.value,
                "step": _active_step(running),
            }
        return BatchProgress(
            job_id=self.job_id,
            state=self.state,
            completed=self.completed_count,
            total=self.total,
            current_item=current,
            per_item_step_status=[
                {
                    "index": r.index,
                    "title": r.request.title,
                    "status": r.status.value,
                    "error": r.error,
                    "failed_step": r.failed_step.value if r.failed_step else None,
                    "steps": r.step_table(),
                }
                for r in self.results
            ],
            halt_reason=self.halt_reason,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for archiving and API responses."""
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "total": self.total,
            "completed": self.completed_count,
            "succeeded": self.success_count,
            "failed": self.failed_count,
            "halt_reason": self.halt_reason,
            "requests": [r.to_dict() for r in self.requests],
            "results": [r.to_dict() for r in self.results],
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def _active_step(result: PipelineResult) -> Optional[str]:
    for step, state in result.steps.items():
        if state.status.value == "running":
            return step.value
    return None


@dataclass
class BatchProgress:
    """Snapshot for rendering "2 of 10 done; item 3 generating audio"."""

    job_id: str
    state: BatchState
    completed: int
    total: int
    current_item: Optional[dict]
    per_item_step_status: list[dict]
    halt_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "completed": self.completed,
            "total": self.total,
            "current_item": self.current_item,
            "per_item_step_status": self.per_item_step_status,
            "halt_reason": self.halt_reason,
        }
