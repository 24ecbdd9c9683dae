"""
Data models for solbatch.

This package contains:
- Pydantic models for the run configuration files
- Dataclasses for tasks, outcomes and per-procedure summaries
"""

from solbatch.models.run_config import (
    AppConfig,
    ExtractionConfig,
    MergeOptions,
)

from solbatch.models.task import (
    ColumnSpec,
    ProcedureSummary,
    RunMode,
    Task,
    TaskOutcome,
    TaskStatus,
)

__all__ = [
    # run_config
    "AppConfig",
    "ExtractionConfig",
    "MergeOptions",
    # task
    "ColumnSpec",
    "ProcedureSummary",
    "RunMode",
    "Task",
    "TaskOutcome",
    "TaskStatus",
]
