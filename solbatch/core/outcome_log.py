"""
Outcome channel and CSV log writers.

Workers push one TaskOutcome per task into a bounded channel; a single
consumer appends them to ``<package>_<mode>.csv`` in completion order. Once
every worker has exited the orchestrator closes the channel, the consumer
flushes and returns, and the per-procedure summary file is written.

Disk writes run in a worker thread so the event loop keeps serving the
database workers while the log is flushed.
"""

from __future__ import annotations

import asyncio
import csv
import logging
from contextlib import suppress
from datetime import datetime, timedelta
from pathlib import Path
from typing import IO, Any, AsyncIterator, Iterable, Optional

from solbatch.errors import ConfigurationError
from solbatch.models import ProcedureSummary, TaskOutcome

logger = logging.getLogger(__name__)

OUTCOME_HEADER = [
    "SOL_ID",
    "PROCEDURE",
    "START_TIME",
    "END_TIME",
    "EXECUTION_TIME",
    "STATUS",
    "ERROR_DETAILS",
]
SUMMARY_HEADER = ["PROCEDURE", "START_TIME", "END_TIME", "EXECUTION_TIME", "STATUS"]

DEFAULT_BUFFER_SIZE = 1000
MAX_ROWS_PER_WRITE = 200

_CLOSED: Any = object()


def format_time(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M:%S.%f")


def format_seconds(delta: timedelta) -> str:
    return f"{delta.total_seconds():.3f}"


def outcome_row(outcome: TaskOutcome) -> list[str]:
    return [
        outcome.sol_id,
        outcome.procedure,
        format_time(outcome.start_time),
        format_time(outcome.end_time),
        format_seconds(outcome.elapsed),
        outcome.status.value,
        outcome.error_details,
    ]


def summary_row(summary: ProcedureSummary) -> list[str]:
    return [
        summary.procedure,
        format_time(summary.start_time),
        format_time(summary.end_time),
        format_seconds(summary.elapsed),
        summary.status.value,
    ]


class OutcomeChannel:
    """Bounded many-producer / single-consumer pipe of TaskOutcomes."""

    def __init__(self, maxsize: int = DEFAULT_BUFFER_SIZE):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, outcome: TaskOutcome) -> None:
        if self._closed:
            raise RuntimeError("send on a closed OutcomeChannel")
        await self._queue.put(outcome)

    async def close(self) -> None:
        """Mark end of stream; call only after every producer has quiesced."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    def _drain_ready(self, limit: int) -> tuple[list[TaskOutcome], bool]:
        """Pull already-buffered outcomes without waiting."""
        batch: list[TaskOutcome] = []
        while len(batch) < limit:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _CLOSED:
                return batch, True
            batch.append(item)
        return batch, False

    async def batches(self, limit: int = MAX_ROWS_PER_WRITE) -> AsyncIterator[list[TaskOutcome]]:
        """Yield lists of outcomes as they arrive until the channel is closed."""
        while True:
            first = await self._queue.get()
            if first is _CLOSED:
                return
            rest, ended = self._drain_ready(limit - 1)
            yield [first, *rest]
            if ended:
                return

    async def __aiter__(self) -> AsyncIterator[TaskOutcome]:
        async for batch in self.batches():
            for outcome in batch:
                yield outcome


class OutcomeLogWriter:
    """
    Single consumer of the outcome channel.

    With ``path=None`` outcomes are only collected in memory. Once started,
    the consumer keeps draining the channel even if the file stops being
    writable, so producers never block on a dead consumer.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self.outcomes: list[TaskOutcome] = []
        self._file: Optional[IO[str]] = None
        self._writer: Any = None
        self._failed = False

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    def open(self) -> None:
        """
        Create the log directory and write the header.

        Raises:
            ConfigurationError: the log file cannot be created
        """
        if self.path is None or self._file is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "w", encoding="utf-8", newline="")
            self._writer = csv.writer(self._file, lineterminator="\n")
            self._writer.writerow(OUTCOME_HEADER)
            self._file.flush()
        except OSError as e:
            self._discard_file()
            raise ConfigurationError(f"Cannot write outcome log {self.path}: {e}") from e

    def _write(self, batch: list[TaskOutcome]) -> None:
        if self._writer is None or self._file is None:
            return
        self._writer.writerows(outcome_row(o) for o in batch)
        self._file.flush()

    def _close(self) -> None:
        if self._file is not None:
            f = self._file
            self._file = None
            self._writer = None
            f.close()

    def _discard_file(self) -> None:
        """Drop the file after an I/O error; outcomes stay in memory."""
        f = self._file
        self._file = None
        self._writer = None
        if f is not None:
            with suppress(OSError):
                f.close()

    async def consume(self, channel: OutcomeChannel) -> list[TaskOutcome]:
        """Drain ``channel`` until it is closed; returns every outcome seen."""
        if self.path is not None and not self.is_open:
            try:
                await asyncio.to_thread(self.open)
            except ConfigurationError as e:
                self._failed = True
                logger.error("%s; outcomes kept in memory only", e)

        try:
            async for batch in channel.batches():
                self.outcomes.extend(batch)
                if not self.is_open:
                    continue
                try:
                    await asyncio.to_thread(self._write, batch)
                except OSError as e:
                    self._failed = True
                    self._discard_file()
                    logger.error(
                        "Outcome log %s write failed, outcomes kept in memory only: %s",
                        self.path,
                        e,
                    )
        finally:
            if self._failed:
                self._discard_file()
            else:
                self._close()

        if self.path is not None and not self._failed:
            logger.info("Wrote %d outcomes to %s", len(self.outcomes), self.path)
        return self.outcomes


def write_summary(path: Path, summaries: Iterable[ProcedureSummary]) -> int:
    """Write the per-procedure summary CSV; returns the number of rows."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(SUMMARY_HEADER)
        for summary in summaries:
            writer.writerow(summary_row(summary))
            count += 1
    logger.info("Wrote %d procedure summaries to %s", count, path)
    return count
