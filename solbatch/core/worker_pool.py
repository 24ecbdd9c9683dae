"""
Dynamic worker pool and the queue-depth pool manager.

Workers are asyncio tasks created from a factory ``(worker_id, stop_signal)``.
The pool keeps them on a stack so scale-down always retires the most recently
added worker; retirement only raises that worker's stop signal, and the
worker exits once its current task has been recorded.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[int, asyncio.Event], Awaitable[object]]

DEFAULT_HIGH_WATERMARK = 20
DEFAULT_LOW_WATERMARK = 5
DEFAULT_SCALE_INTERVAL_SECONDS = 1.0


class WorkerPool:
    """
    Bounded pool of worker tasks, ``min_workers <= count <= max_workers``.
    """

    def __init__(
        self,
        worker_factory: WorkerFactory,
        *,
        min_workers: int,
        max_workers: int,
    ):
        if min_workers < 0 or max_workers < 1 or min_workers > max_workers:
            raise ValueError(
                f"invalid worker bounds: min={min_workers}, max={max_workers}"
            )
        self.worker_factory = worker_factory
        self.min_workers = int(min_workers)
        self.max_workers = int(max_workers)

        # Active workers, newest last.
        self._worker_tasks: list[tuple[int, asyncio.Task, asyncio.Event]] = []
        # Stop-signalled workers that may still be finishing a task.
        self._retired: list[tuple[int, asyncio.Task, asyncio.Event]] = []
        self._next_worker_id = 1
        self.peak_count = 0

    @property
    def count(self) -> int:
        """Current worker count (retired workers excluded)."""
        return len(self._worker_tasks)

    def running_worker_ids(self) -> list[int]:
        """IDs of active workers whose tasks have not finished."""
        return [wid for wid, t, _ in self._worker_tasks if not t.done()]

    def all_tasks(self) -> list[asyncio.Task]:
        return [t for _, t, _ in self._worker_tasks + self._retired]

    async def spawn_one(self) -> Optional[int]:
        """
        Start one more worker.

        Returns:
            The new worker's ID, or None when the pool is at max_workers.
        """
        if self.count >= self.max_workers:
            return None

        wid = self._next_worker_id
        self._next_worker_id += 1
        stop_signal = asyncio.Event()
        task = asyncio.create_task(
            self.worker_factory(wid, stop_signal), name=f"solbatch-worker-{wid}"
        )
        self._worker_tasks.append((wid, task, stop_signal))
        self.peak_count = max(self.peak_count, self.count)
        return wid

    async def start(self, n: Optional[int] = None) -> list[int]:
        """Start ``n`` workers (default: min_workers)."""
        started: list[int] = []
        for _ in range(self.min_workers if n is None else n):
            wid = await self.spawn_one()
            if wid is None:
                break
            started.append(wid)
        return started

    def retire_newest(self) -> Optional[int]:
        """
        Signal the most recently added worker to stop after its current task.

        Returns:
            The retired worker's ID, or None when the pool is at min_workers.
        """
        if self.count <= self.min_workers:
            return None
        wid, task, stop_signal = self._worker_tasks.pop()
        stop_signal.set()
        self._retired.append((wid, task, stop_signal))
        return wid

    def prune_completed(self) -> None:
        """Forget retired workers that have exited."""
        self._retired = [e for e in self._retired if not e[1].done()]

    async def wait_all(self) -> None:
        """
        Wait for every worker, including ones spawned while waiting.

        Worker exceptions are logged, not raised.
        """
        while True:
            pending = [t for t in self.all_tasks() if not t.done()]
            if not pending:
                break
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Worker crashed: %s", result)

    async def stop_all(
        self, *, abort: bool = False, timeout_seconds: Optional[float] = None
    ) -> None:
        """
        Raise every worker's stop signal and wait for them to exit.

        Args:
            abort: Also cancel in-flight tasks instead of letting them finish
            timeout_seconds: Give up waiting after this long (then cancel)
        """
        entries = self._worker_tasks + self._retired
        for _, task, stop_signal in entries:
            stop_signal.set()
            if abort and not task.done():
                task.cancel()

        tasks = [t for _, t, _ in entries]
        if tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*tasks, return_exceptions=True),
                    timeout=timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for workers to stop")
        self._worker_tasks.clear()
        self._retired.clear()


class PoolManager:
    """
    Resizes a WorkerPool from the task queue depth.

    At most one scale event per tick: above the high watermark add a worker,
    below the low watermark retire the newest one.
    """

    def __init__(
        self,
        pool: WorkerPool,
        queue_depth: Callable[[], int],
        *,
        high_watermark: int = DEFAULT_HIGH_WATERMARK,
        low_watermark: int = DEFAULT_LOW_WATERMARK,
        interval_seconds: float = DEFAULT_SCALE_INTERVAL_SECONDS,
    ):
        self.pool = pool
        self.queue_depth = queue_depth
        self.high_watermark = high_watermark
        self.low_watermark = low_watermark
        self.interval_seconds = interval_seconds
        self.log = logging.LoggerAdapter(logger, {"worker_id": "MANAGER"})

    async def tick(self) -> Optional[str]:
        """
        One observation.

        Returns:
            "up", "down" or None, depending on the scale event taken.
        """
        qlen = self.queue_depth()
        if qlen > self.high_watermark and self.pool.count < self.pool.max_workers:
            wid = await self.pool.spawn_one()
            if wid is not None:
                self.log.info(
                    "[Manager] Increased workers to %d (queue=%d)", self.pool.count, qlen
                )
                return "up"
        elif qlen < self.low_watermark and self.pool.count > self.pool.min_workers:
            wid = self.pool.retire_newest()
            if wid is not None:
                self.log.info(
                    "[Manager] Decreased workers to %d (queue=%d, retired %d)",
                    self.pool.count,
                    qlen,
                    wid,
                )
                return "down"
        self.pool.prune_completed()
        return None

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick every ``interval_seconds`` until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self.tick()
