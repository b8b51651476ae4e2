"""
Run-level state tracking.

PipelineState is owned by the consumer side of the pipeline. It records how
far the run got (pages, bytes) and how it ended, and refuses transitions
that do not make sense:

    PENDING -> RUNNING -> DRAINING -> COMPLETED
                  |          |
                  +----------+--> INTERRUPTED | FAILED
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DRAINING = "draining"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.INTERRUPTED, RunStatus.FAILED)


_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED},
    RunStatus.RUNNING: {RunStatus.DRAINING, RunStatus.INTERRUPTED, RunStatus.FAILED},
    RunStatus.DRAINING: {RunStatus.COMPLETED, RunStatus.INTERRUPTED, RunStatus.FAILED},
    RunStatus.COMPLETED: set(),
    RunStatus.INTERRUPTED: set(),
    RunStatus.FAILED: set(),
}


class InvalidTransition(RuntimeError):
    """Raised on an illegal PipelineState transition."""


@dataclass
class FailureInfo:
    stage: str
    message: str
    offset: Optional[int] = None
    page_id: Optional[int] = None
    title: Optional[str] = None


@dataclass
class PipelineState:
    """Progress and outcome of one extraction run."""

    status: RunStatus = RunStatus.PENDING
    stage: str = "pending"
    current_archive: Optional[str] = None
    total_size: Optional[int] = None  # declared compressed size, if known

    pages_processed: int = 0
    pages_written: int = 0
    pages_skipped: int = 0  # filtered namespace or unsupported content model
    redirects: int = 0
    degraded_pages: int = 0
    segmentation_failures: int = 0
    bytes_consumed: int = 0  # compressed bytes, summed over archives

    verified: Optional[bool] = None  # None when no digest was published
    limited: bool = False
    failure: Optional[FailureInfo] = None

    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def transition(self, status: RunStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"cannot go from {self.status.value} to {status.value}")
        self.status = status
        if status.terminal:
            self.finished_at = time.time()

    def fail(self, stage: str, message: str, offset: Optional[int] = None, **page) -> None:
        self.failure = FailureInfo(stage=stage, message=message, offset=offset, **page)
        self.transition(RunStatus.FAILED)

    def record_checksum(self, ok: Optional[bool]) -> None:
        """Fold one archive's checksum result into the run verdict."""
        if ok is None:
            return
        if ok is False or self.verified is False:
            self.verified = False
        else:
            self.verified = True

    @property
    def elapsed(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.time()
        return end - self.started_at

    @property
    def percent(self) -> Optional[float]:
        if not self.total_size:
            return None
        return min(1.0, self.bytes_consumed / self.total_size)

    @property
    def exit_code(self) -> int:
        if self.status == RunStatus.COMPLETED:
            return 0
        if self.status == RunStatus.INTERRUPTED:
            return 130
        return 1

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "stage": self.stage,
            "current_archive": self.current_archive,
            "pages_processed": self.pages_processed,
            "pages_written": self.pages_written,
            "pages_skipped": self.pages_skipped,
            "redirects": self.redirects,
            "degraded_pages": self.degraded_pages,
            "segmentation_failures": self.segmentation_failures,
            "bytes_consumed": self.bytes_consumed,
            "total_size": self.total_size,
            "verified": self.verified,
            "limited": self.limited,
            "elapsed_seconds": round(self.elapsed, 3),
        }
        if self.failure is not None:
            data["failure"] = {
                "stage": self.failure.stage,
                "message": self.failure.message,
                "offset": self.failure.offset,
                "page_id": self.failure.page_id,
                "title": self.failure.title,
            }
        return data
