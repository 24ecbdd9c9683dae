"""
Run orchestration.

Builds the (SOL x procedure) task list, stands up the worker pool and its
manager, feeds the queue, waits for every worker, then writes the summary and
(in extract mode) merges the spool files.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from solbatch.core.executor.actions import RowSource, TaskActionDispatcher
from solbatch.core.executor.worker import TaskWorker
from solbatch.core.merge import find_spool_name_conflicts, merge_spools
from solbatch.core.outcome_log import OutcomeChannel, OutcomeLogWriter, write_summary
from solbatch.core.progress import ProgressCounter, format_elapsed
from solbatch.core.summary import ProcedureSummaryAggregator
from solbatch.core.task_queue import TaskQueue
from solbatch.core.worker_pool import PoolManager, WorkerPool
from solbatch.errors import ConfigurationError, tally_categories
from solbatch.models import (
    AppConfig,
    ColumnSpec,
    ExtractionConfig,
    ProcedureSummary,
    RunMode,
    Task,
    TaskOutcome,
    TaskStatus,
)

logger = logging.getLogger(__name__)


def build_tasks(sols: Sequence[str], procedures: Sequence[str]) -> List[Task]:
    """Tasks in SOL-major, procedure-minor order."""
    return [Task(sol_id=sol, procedure=proc) for sol in sols for proc in procedures]


def log_file_names(package_name: str, mode: RunMode) -> tuple[str, str]:
    """``(<package>_<mode>.csv, <package>_<mode>_summary.csv)``."""
    base = f"{package_name}_{mode.label}"
    return f"{base}.csv", f"{base}_summary.csv"


@dataclass
class RunReport:
    """What a run produced."""

    mode: RunMode
    total_tasks: int
    outcomes: List[TaskOutcome] = field(default_factory=list)
    summaries: List[ProcedureSummary] = field(default_factory=list)
    merged_files: List[Path] = field(default_factory=list)
    peak_workers: int = 0
    cancelled: bool = False
    elapsed: timedelta = timedelta(0)

    @property
    def failed(self) -> List[TaskOutcome]:
        return [o for o in self.outcomes if o.status == TaskStatus.FAIL]

    @property
    def succeeded_count(self) -> int:
        return len(self.outcomes) - len(self.failed)


class Orchestrator:
    """
    Runs one batch: every (SOL, procedure) pair exactly once.

    The database pool and templates are created by the caller; start-up
    errors (config, templates, connect) are raised before this object is
    built.
    """

    def __init__(
        self,
        *,
        app_config: AppConfig,
        run_config: ExtractionConfig,
        mode: RunMode | str,
        pool: RowSource,
        sols: Sequence[str],
        templates: Optional[Dict[str, List[ColumnSpec]]] = None,
        write_logs: bool = True,
    ):
        try:
            self.mode = RunMode(mode)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid mode {mode!r}. Valid values are 'E' for Extract and 'I' for Insert."
            ) from e

        self.app_config = app_config
        self.run_config = run_config
        self.pool = pool
        self.sols = list(sols)
        self.templates = templates or {}
        self.write_logs = write_logs

        if self.mode is RunMode.EXTRACT:
            self._check_spool_names()

        self.tasks = build_tasks(self.sols, run_config.procedures)
        self.dispatcher = TaskActionDispatcher(
            self.mode, pool, run_config, self.templates
        )
        self.summary = ProcedureSummaryAggregator(run_config.procedures)
        self.progress = ProgressCounter(len(self.tasks))

        self.worker_pool: Optional[WorkerPool] = None
        self._stop_event = asyncio.Event()
        self._cancelled = False

    def _make_worker(
        self,
        queue: TaskQueue,
        channel: OutcomeChannel,
    ):
        async def factory(worker_id: int, stop_signal: asyncio.Event) -> int:
            worker = TaskWorker(
                worker_id,
                queue=queue,
                dispatcher=self.dispatcher,
                summary=self.summary,
                outcomes=channel,
                progress=self.progress,
            )
            return await worker.run(stop_signal)

        return factory

    def _check_spool_names(self) -> None:
        cfg = self.run_config
        split_procs = [p for p in cfg.procedures if cfg.split_rules.get(p)]
        conflicts = find_spool_name_conflicts(cfg.procedures, split_procs, self.sols)
        if conflicts:
            shown = "; ".join(
                f"{a[0]}/{a[1]} vs {b[0]}/{b[1]}" for a, b in conflicts[:5]
            )
            raise ConfigurationError(
                f"{len(conflicts)} (procedure/SOL) pairs would share spool file names: {shown}"
            )

    def _log_paths(self) -> tuple[Optional[Path], Optional[Path]]:
        if not self.write_logs:
            return None, None
        log_name, summary_name = log_file_names(self.run_config.package_name, self.mode)
        log_dir = self.app_config.log_file_path
        return log_dir / log_name, log_dir / summary_name

    def cancel(self) -> None:
        """Root cancellation: stop scaling, stop every worker, abort in-flight work."""
        if self._cancelled:
            return
        logger.warning("Cancellation requested; stopping workers")
        self._cancelled = True
        self._stop_event.set()
        if self.worker_pool is not None:
            for task in self.worker_pool.all_tasks():
                task.cancel()

    async def run(self) -> RunReport:
        """
        Execute the batch.

        Returns:
            RunReport with every recorded outcome and the procedure summaries
        """
        cfg = self.app_config
        total = len(self.tasks)
        start_perf = time.perf_counter()
        logger.info(
            "Found %d SOLs and %d procedures, creating %d tasks.",
            len(self.sols),
            len(self.run_config.procedures),
            total,
        )

        # Output locations must be usable before any task runs.
        if self.mode is RunMode.EXTRACT:
            spool_dir = self.run_config.spool_output_path
            try:
                spool_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot create spool directory {spool_dir}: {e}"
                ) from e
        log_path, summary_path = self._log_paths()
        log_writer = OutcomeLogWriter(log_path)
        await asyncio.to_thread(log_writer.open)

        queue = TaskQueue(maxsize=max(1, total))
        channel = OutcomeChannel(cfg.outcome_buffer_size)
        writer_task = asyncio.create_task(log_writer.consume(channel))

        self.worker_pool = WorkerPool(
            self._make_worker(queue, channel),
            min_workers=cfg.min_workers,
            max_workers=cfg.max_workers,
        )
        manager = PoolManager(
            self.worker_pool,
            queue.qsize,
            high_watermark=cfg.high_watermark,
            low_watermark=cfg.low_watermark,
            interval_seconds=cfg.scale_interval_seconds,
        )

        manager_task: Optional[asyncio.Task] = None
        try:
            await self.worker_pool.start()
            manager_task = asyncio.create_task(manager.run(self._stop_event))

            for task in self.tasks:
                queue.put_nowait(task)
            queue.close()

            await self.worker_pool.wait_all()
            self._stop_event.set()
            await manager_task
            # The manager may have spawned a worker just before stopping.
            await self.worker_pool.wait_all()

        except asyncio.CancelledError:
            # Ensure worker tasks don't leak on interrupt/shutdown.
            self._cancelled = True
            self._stop_event.set()
            await self.worker_pool.stop_all(abort=True)
            if manager_task is not None:
                manager_task.cancel()
                await asyncio.gather(manager_task, return_exceptions=True)
            await channel.close()
            await asyncio.gather(writer_task, return_exceptions=True)
            raise

        finally:
            if manager_task is not None and not manager_task.done():
                manager_task.cancel()
                await asyncio.gather(manager_task, return_exceptions=True)

        await channel.close()
        outcomes = await writer_task

        summaries = self.summary.finalize()
        if summary_path is not None:
            try:
                await asyncio.to_thread(write_summary, summary_path, summaries)
            except OSError as e:
                logger.error("Failed to write summary %s: %s", summary_path, e)

        merged: List[Path] = []
        if self.mode is RunMode.EXTRACT:
            merged = await asyncio.to_thread(merge_spools, self.run_config, self.sols)

        report = RunReport(
            mode=self.mode,
            total_tasks=total,
            outcomes=outcomes,
            summaries=summaries,
            merged_files=merged,
            peak_workers=self.worker_pool.peak_count,
            cancelled=self._cancelled,
            elapsed=timedelta(seconds=time.perf_counter() - start_perf),
        )
        self._log_report(report)
        return report

    def _log_report(self, report: RunReport) -> None:
        failed = report.failed
        if failed:
            tally = tally_categories(o.error_category or "UNKNOWN" for o in failed)
            logger.warning(
                "%d of %d tasks failed: %s",
                len(failed),
                report.total_tasks,
                ", ".join(f"{cat}={n}" for cat, n in tally),
            )
        for s in report.summaries:
            logger.info(
                "Summary %s: %s (%d tasks, %d failed, %s)",
                s.procedure,
                s.status.value,
                s.task_count,
                s.failed_count,
                format_elapsed(s.elapsed.total_seconds()),
            )
        logger.info(
            "🎯 All done! Processed %d/%d tasks in %s (peak workers %d)%s",
            len(report.outcomes),
            report.total_tasks,
            format_elapsed(report.elapsed.total_seconds()),
            report.peak_workers,
            " [cancelled]" if report.cancelled else "",
        )
