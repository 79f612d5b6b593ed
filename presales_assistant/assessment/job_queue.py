"""
In-process submission queue and per-job locks.

The queue only carries job ids; the payload lives in the repository, so a
restart loses queue position but never data (the worker pool re-enqueues
non-terminal jobs on startup).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from .errors import QueueClosedError

logger = logging.getLogger(__name__)

_SHUTDOWN = object()


class SubmissionQueue:
    """
    Unbounded FIFO of job ids shared by request handlers and worker loops.
    `join()` counts enqueued ids only, so it still returns after `close()`.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._unfinished = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def enqueue(self, job_id: str) -> None:
        if self._closed:
            raise QueueClosedError(f"Submission queue is closed; cannot enqueue job {job_id}")
        self._unfinished += 1
        self._idle.clear()
        self._queue.put_nowait(job_id)
        logger.debug("Enqueued assessment job %s (depth=%d)", job_id, self._queue.qsize())

    async def dequeue(self) -> Optional[str]:
        """
        Wait for the next job id. Returns None once the queue has been closed
        and everything enqueued before the close has been handed out.
        """
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _SHUTDOWN:
            # Wake the next consumer too; each loop must observe the shutdown.
            self._queue.put_nowait(_SHUTDOWN)
            return None
        return item

    def task_done(self) -> None:
        if self._unfinished <= 0:
            raise ValueError("task_done() called more times than ids were enqueued")
        self._unfinished -= 1
        if self._unfinished == 0:
            self._idle.set()

    async def join(self) -> None:
        """Wait until every enqueued id has been dequeued and marked done."""
        await self._idle.wait()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_SHUTDOWN)


class JobLocks:
    """
    One asyncio.Lock per job id, shared by the worker and the status façade so
    a job's read-modify-write cycles never interleave. A lock is dropped once
    its last holder or waiter leaves.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, job_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        self._users[job_id] = self._users.get(job_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[job_id] -= 1
            if self._users[job_id] == 0:
                del self._users[job_id]
                del self._locks[job_id]

    def __len__(self) -> int:
        return len(self._locks)
