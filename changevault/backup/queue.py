# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Task Queue - Bounded queue, worker pool and per-path locks.

The queue is lossy under burst: submit() never blocks, and a full queue
drops the task and counts it. Once closed, the queue rejects every new
submission.

The worker pool runs a fixed number of asyncio workers that pull from the
queue and hand each item to a handler coroutine. A failing handler is
logged and the worker moves on. stop() is cooperative: idle workers are
cancelled, busy workers finish their current item and then exit.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, List, Set, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class TaskQueue(Generic[T]):
    """Bounded FIFO queue with non-blocking submission."""

    def __init__(self, capacity: int, name: str = "backup"):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.name = name
        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self.submitted = 0
        self.dropped = 0
        self.rejected = 0
        self.abandoned = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def submit(self, item: T) -> bool:
        """
        Offer an item to the queue without waiting.

        Args:
            item: Task to enqueue

        Returns:
            True if the item was queued, False if it was dropped (queue
            full) or rejected (queue closed)
        """
        path = getattr(item, "path", None)

        if self._closed:
            self.rejected += 1
            logger.debug(f"{self.name}_queue_closed", path=path)
            return False

        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"{self.name}_queue_full",
                path=path,
                capacity=self.capacity,
                dropped=self.dropped,
            )
            return False

        self.submitted += 1
        return True

    async def get(self) -> T:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued item has been processed."""
        await self._queue.join()

    def close(self) -> None:
        """Stop accepting new items. Queued items stay queued."""
        self._closed = True

    def discard_pending(self) -> List[T]:
        """
        Remove every item still waiting in the queue.

        Removed items are counted as abandoned.

        Returns:
            The removed items, oldest first
        """
        pending: List[T] = []
        while True:
            try:
                pending.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
        self.abandoned += len(pending)
        return pending

    def stats(self) -> Dict[str, int]:
        return {
            "queued": self.qsize(),
            "submitted": self.submitted,
            "dropped": self.dropped,
            "rejected": self.rejected,
            "abandoned": self.abandoned,
        }


class WorkerPool(Generic[T]):
    """
    Fixed-size pool of asyncio workers draining a TaskQueue.

    Usage:
        pool = WorkerPool(queue, handler)
        pool.start(4)
        ...
        await pool.stop(drain=True)
    """

    def __init__(
        self,
        queue: TaskQueue[T],
        handler: Callable[[T], Awaitable[Any]],
        name: str = "backup",
    ):
        self.queue = queue
        self.name = name
        self._handler = handler
        self._workers: Dict[int, asyncio.Task] = {}
        self._idle: Set[int] = set()
        self._stopping = False
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._stopping

    @property
    def busy(self) -> int:
        return len(self._workers) - len(self._idle)

    def start(self, worker_count: int) -> None:
        """
        Spawn worker tasks on the running event loop.

        Args:
            worker_count: Number of workers
        """
        if self._workers:
            return
        if worker_count < 1:
            raise ValueError(f"worker_count must be >= 1, got {worker_count}")

        self._stopping = False
        for worker_id in range(worker_count):
            self._workers[worker_id] = asyncio.create_task(
                self._worker(worker_id),
                name=f"{self.name}-worker-{worker_id}",
            )
        logger.info(f"{self.name}_workers_started", workers=worker_count)

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"{self.name}_worker_started", worker_id=worker_id)

        while not self._stopping:
            self._idle.add(worker_id)
            try:
                item = await self.queue.get()
            finally:
                self._idle.discard(worker_id)

            try:
                await self._handler(item)
            except Exception as e:
                self.failed += 1
                logger.error(
                    f"{self.name}_worker_task_failed",
                    worker_id=worker_id,
                    path=getattr(item, "path", None),
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self.processed += 1
                self.queue.task_done()

        logger.debug(f"{self.name}_worker_stopping", worker_id=worker_id)

    async def stop(self, drain: bool = False) -> int:
        """
        Stop the pool cooperatively.

        New submissions are rejected immediately. With drain=True every
        item already queued is processed first. Otherwise idle workers exit
        at once, busy workers finish their current item, and whatever is
        still queued is abandoned.

        Args:
            drain: Process the queue to empty before stopping

        Returns:
            Number of abandoned items
        """
        self.queue.close()

        if drain and self._workers:
            await self.queue.join()

        self._stopping = True
        for worker_id, task in self._workers.items():
            if worker_id in self._idle:
                task.cancel()

        if self._workers:
            await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        self._idle.clear()

        abandoned = self.queue.discard_pending()
        if abandoned:
            logger.warning(
                f"{self.name}_tasks_abandoned",
                count=len(abandoned),
                paths=[getattr(item, "path", None) for item in abandoned],
            )

        logger.info(
            f"{self.name}_workers_stopped",
            processed=self.processed,
            abandoned=len(abandoned),
        )
        return len(abandoned)


class PathLocks:
    """
    Per-path advisory locks.

    Tasks for the same path acquire the lock in claim order; tasks for
    different paths never wait on each other. Locks are released from the
    table when no task holds or waits for them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, path: str) -> bool:
        lock = self._locks.get(path)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, path: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(path, asyncio.Lock())
        self._users[path] = self._users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[path] -= 1
            if self._users[path] == 0:
                del self._users[path]
                del self._locks[path]
