"""
Task worker: pulls tasks, dispatches them and records their outcomes.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from solbatch.core.progress import ProgressCounter
from solbatch.core.summary import ProcedureSummaryAggregator
from solbatch.core.task_queue import TaskQueue
from solbatch.errors import classify_task_error, error_details
from solbatch.models import Task, TaskOutcome, TaskStatus

if TYPE_CHECKING:
    from solbatch.core.executor.actions import TaskActionDispatcher
    from solbatch.core.outcome_log import OutcomeChannel

logger = logging.getLogger(__name__)

CANCELLED_DETAILS = "cancelled"


class TaskWorker:
    """
    Long-lived consumer of the task queue.

    Stop signals are only observed between tasks: a task in progress always
    finishes and records its outcome before the worker checks its signal.
    """

    def __init__(
        self,
        worker_id: int,
        *,
        queue: TaskQueue,
        dispatcher: "TaskActionDispatcher",
        summary: ProcedureSummaryAggregator,
        outcomes: "OutcomeChannel",
        progress: ProgressCounter,
    ):
        self.worker_id = worker_id
        self.queue = queue
        self.dispatcher = dispatcher
        self.summary = summary
        self.outcomes = outcomes
        self.progress = progress
        self.tasks_done = 0
        self.log = logging.LoggerAdapter(logger, {"worker_id": worker_id})

    async def run(self, stop_signal: Optional[asyncio.Event] = None) -> int:
        """
        Process tasks until the queue is closed and drained, or the stop
        signal is raised.

        Returns:
            Number of tasks this worker completed
        """
        self.log.info("Worker %d started", self.worker_id)
        while True:
            task = await self.queue.get(stop_signal)
            if task is None:
                break
            await self.execute(task)

        if stop_signal is not None and stop_signal.is_set():
            self.log.info("Worker %d exiting (stopped)", self.worker_id)
        else:
            self.log.info("Worker %d: task queue closed", self.worker_id)
        return self.tasks_done

    async def execute(self, task: Task) -> TaskOutcome:
        """Run one task and record its outcome, summary and progress."""
        start_wall = datetime.now()
        start_perf = time.perf_counter()
        status = TaskStatus.SUCCESS
        details = ""
        category: Optional[str] = None

        try:
            await self.dispatcher.dispatch(task)
        except asyncio.CancelledError:
            # Root abort: the task still gets exactly one outcome.
            outcome = self._outcome(
                task, start_wall, start_perf, TaskStatus.FAIL, CANCELLED_DETAILS, "CANCELLED"
            )
            await self._record(outcome)
            raise
        except Exception as e:
            status = TaskStatus.FAIL
            details = error_details(e)
            category = classify_task_error(e)
            self.log.error(
                "❌ %s for SOL %s failed: %s", task.procedure, task.sol_id, details
            )

        outcome = self._outcome(task, start_wall, start_perf, status, details, category)
        await self._record(outcome)
        return outcome

    def _outcome(
        self,
        task: Task,
        start_wall: datetime,
        start_perf: float,
        status: TaskStatus,
        details: str,
        category: Optional[str],
    ) -> TaskOutcome:
        # End time derives from the monotonic clock so end >= start always.
        elapsed = timedelta(seconds=max(0.0, time.perf_counter() - start_perf))
        return TaskOutcome(
            sol_id=task.sol_id,
            procedure=task.procedure,
            start_time=start_wall,
            end_time=start_wall + elapsed,
            elapsed=elapsed,
            status=status,
            error_details=details,
            error_category=category,
            worker_id=self.worker_id,
        )

    async def _record(self, outcome: TaskOutcome) -> None:
        await self.outcomes.send(outcome)
        await self.summary.record(outcome)
        self.tasks_done += 1
        self.progress.increment()
