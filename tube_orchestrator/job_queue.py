"""
Bounded hand-off between job submitters and the worker.

submit() waits while the queue is full instead of dropping work. take() waits
for an item or for the caller's cancellation signal, whichever comes first.
Closing the queue fails pending and future submits.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import QueueCancelledError, QueueClosedError
from .models import Stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItem:
    """A queued unit of work: run job_id starting at start_stage"""
    job_id: int
    start_stage: Stage = Stage.RESEARCH

    @property
    def is_resume(self) -> bool:
        return self.start_stage != Stage.RESEARCH


class BoundedJobQueue:
    """FIFO queue with a fixed capacity and wait-on-full backpressure"""

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("Queue capacity must be at least 1")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    async def submit(self, item: WorkItem) -> None:
        """Enqueue item, waiting while the queue is full"""
        if self.closed:
            raise QueueClosedError("Job queue is closed")

        if not self._queue.full():
            self._queue.put_nowait(item)
            logger.debug(f"[queue] Enqueued job {item.job_id} at {item.start_stage.value}")
            return

        logger.info(f"[queue] Queue full ({self.capacity}); waiting to enqueue job {item.job_id}")
        put_task = asyncio.ensure_future(self._queue.put(item))
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({put_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_task.cancel()
            if not put_task.done():
                put_task.cancel()

        if put_task.done() and not put_task.cancelled():
            put_task.result()
            logger.debug(f"[queue] Enqueued job {item.job_id} at {item.start_stage.value}")
            return
        raise QueueClosedError("Job queue closed while waiting to submit")

    def try_submit(self, item: WorkItem) -> bool:
        """Enqueue without waiting; False if the queue is full"""
        if self.closed:
            raise QueueClosedError("Job queue is closed")
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            return False
        return True

    async def take(self, cancel_signal: Optional[asyncio.Event] = None) -> WorkItem:
        """Wait for the next item, or raise QueueCancelledError when cancel_signal fires"""
        if cancel_signal is None:
            return await self._queue.get()
        if cancel_signal.is_set():
            raise QueueCancelledError("Shutdown requested")

        get_task = asyncio.ensure_future(self._queue.get())
        cancel_task = asyncio.ensure_future(cancel_signal.wait())
        try:
            await asyncio.wait({get_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            if not get_task.done():
                get_task.cancel()

        # An item that was already dequeued is handed out rather than lost
        if get_task.done() and not get_task.cancelled():
            return get_task.result()
        raise QueueCancelledError("Shutdown requested")

    def close(self) -> None:
        if not self.closed:
            logger.info(f"[queue] Closing job queue with {self.qsize()} item(s) pending")
        self._closed.set()
