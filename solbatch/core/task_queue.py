"""
Closable task queue shared by the orchestrator (producer) and workers.
"""

import asyncio
import logging
from typing import Optional

from solbatch.models import Task

logger = logging.getLogger(__name__)


class TaskQueue:
    """
    ``asyncio.Queue`` plus an end-of-input flag.

    The producer puts every task and then calls ``close()``. ``get()`` returns
    ``None`` once the queue is drained and closed, or as soon as the caller's
    stop signal is raised; a stop signal raised while a worker is idle wakes
    it without consuming a task.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[Task] = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        """Number of queued-but-unclaimed tasks."""
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def put_nowait(self, task: Task) -> None:
        if self.closed:
            raise RuntimeError("put on a closed TaskQueue")
        self._queue.put_nowait(task)

    async def put(self, task: Task) -> None:
        if self.closed:
            raise RuntimeError("put on a closed TaskQueue")
        await self._queue.put(task)

    def close(self) -> None:
        """Signal that no more tasks will be submitted."""
        self._closed.set()

    async def get(self, stop_signal: Optional[asyncio.Event] = None) -> Optional[Task]:
        """
        Claim the next task.

        Returns:
            The next task, or None when the queue is closed and drained or the
            stop signal is set.
        """
        while True:
            if stop_signal is not None and stop_signal.is_set():
                return None
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self.closed:
                return None

            getter = asyncio.ensure_future(self._queue.get())
            waiters = [getter, asyncio.ensure_future(self._closed.wait())]
            if stop_signal is not None:
                waiters.append(asyncio.ensure_future(stop_signal.wait()))

            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                await self._discard(waiters)
                # Hand a task claimed during cancellation back to the queue.
                if self._claimed(getter):
                    self._queue.put_nowait(getter.result())
                raise
            await self._discard(waiters)

            # A getter that completed has already removed its task from the
            # queue, so it must be handed out even if a stop raced with it.
            if self._claimed(getter):
                return getter.result()

    @staticmethod
    def _claimed(getter: "asyncio.Future[Task]") -> bool:
        return getter.done() and not getter.cancelled() and getter.exception() is None

    @staticmethod
    async def _discard(waiters: list) -> None:
        for w in waiters:
            if not w.done():
                w.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)
