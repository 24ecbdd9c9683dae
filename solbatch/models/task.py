"""
Task and outcome records.

Plain dataclasses: these are created at high rate by the workers and never
validated from external input.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class RunMode(str, Enum):
    """Operating mode, fixed for the whole run."""

    EXTRACT = "E"
    INSERT = "I"

    @property
    def label(self) -> str:
        """Word used in log file names (``<package>_<label>.csv``)."""
        return "extract" if self is RunMode.EXTRACT else "insert"


class TaskStatus(str, Enum):
    """Per-task and per-procedure status."""

    SUCCESS = "SUCCESS"
    FAIL = "FAIL"


@dataclass(frozen=True)
class Task:
    """One (SOL, procedure) work item."""

    sol_id: str
    procedure: str


@dataclass(frozen=True)
class ColumnSpec:
    """One output column from a procedure template."""

    name: str
    attributes: dict[str, str] = field(default_factory=dict, compare=False)


@dataclass
class TaskOutcome:
    """Result of executing a single task."""

    sol_id: str
    procedure: str
    start_time: datetime
    end_time: datetime
    elapsed: timedelta
    status: TaskStatus
    error_details: str = ""
    error_category: Optional[str] = None
    worker_id: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCESS


@dataclass
class ProcedureSummary:
    """Roll-up of every outcome recorded for one procedure."""

    procedure: str
    start_time: datetime
    end_time: datetime
    status: TaskStatus
    task_count: int = 1
    failed_count: int = 0

    @property
    def elapsed(self) -> timedelta:
        return self.end_time - self.start_time

    @classmethod
    def from_outcome(cls, outcome: TaskOutcome) -> "ProcedureSummary":
        return cls(
            procedure=outcome.procedure,
            start_time=outcome.start_time,
            end_time=outcome.end_time,
            status=outcome.status,
            task_count=1,
            failed_count=0 if outcome.succeeded else 1,
        )

    def absorb(self, outcome: TaskOutcome) -> None:
        """Fold another outcome in: min start, max end, FAIL is sticky."""
        if outcome.start_time < self.start_time:
            self.start_time = outcome.start_time
        if outcome.end_time > self.end_time:
            self.end_time = outcome.end_time
        if outcome.status == TaskStatus.FAIL:
            self.status = TaskStatus.FAIL
            self.failed_count += 1
        self.task_count += 1
