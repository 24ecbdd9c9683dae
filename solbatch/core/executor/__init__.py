"""
Per-task execution: actions, spool writing and the worker loop.
"""

from solbatch.core.executor.actions import (
    ActionResult,
    ExtractAction,
    InsertAction,
    TaskActionDispatcher,
    build_select,
)
from solbatch.core.executor.worker import TaskWorker

__all__ = [
    "ActionResult",
    "ExtractAction",
    "InsertAction",
    "TaskActionDispatcher",
    "TaskWorker",
    "build_select",
]
