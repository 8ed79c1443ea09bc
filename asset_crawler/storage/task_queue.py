from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, Iterable, List, Optional

from asset_crawler.models import Task
from asset_crawler.monitoring.metrics_server import QUEUE_PENDING


STATUS_OPEN = "OPEN"
STATUS_DRAINED = "DRAINED"
STATUS_CLOSED = "CLOSED"


class JobTaskQueue:
    """
    Unbounded FIFO of one job's tasks plus its in-flight counter.

    Both live behind one condition, which is the single place that decides
    the job has run dry: ``get`` returns None only once the queue is empty
    and no worker holds a task. A worker enqueues follow-up tasks before it
    calls ``task_done``, so the queue can never look finished while such a
    push is pending.
    """

    def __init__(self) -> None:
        self._items: Deque[Task] = deque()
        self._in_flight = 0
        self._cond = asyncio.Condition()
        self.status = STATUS_OPEN

    # -------------------------------------------------------
    # Introspection
    # -------------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._items)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def closed(self) -> bool:
        return self.status == STATUS_CLOSED

    # -------------------------------------------------------
    # Queue operations
    # -------------------------------------------------------

    async def put(self, task: Task) -> bool:
        return await self.put_many([task]) == 1

    async def put_many(self, tasks: Iterable[Task]) -> int:
        """Append tasks; returns how many were accepted (none once closed or drained)."""
        async with self._cond:
            if self.status != STATUS_OPEN:
                return 0
            added = 0
            for task in tasks:
                self._items.append(task)
                added += 1
            QUEUE_PENDING.inc(added)
            self._cond.notify(added)
            return added

    async def get(self) -> Optional[Task]:
        """Next task, or None once the job ran dry or the queue was closed."""
        async with self._cond:
            while True:
                if self.status != STATUS_OPEN:
                    return None
                if self._items:
                    self._in_flight += 1
                    QUEUE_PENDING.dec()
                    return self._items.popleft()
                if self._in_flight == 0:
                    self.status = STATUS_DRAINED
                    self._cond.notify_all()
                    return None
                await self._cond.wait()

    async def task_done(self) -> None:
        async with self._cond:
            self._in_flight -= 1
            if self._in_flight == 0 and not self._items:
                self._cond.notify_all()

    async def close(self) -> List[Task]:
        """Stop handing out tasks and return the ones that never started."""
        async with self._cond:
            if self.status == STATUS_OPEN:
                self.status = STATUS_CLOSED
            leftover = list(self._items)
            self._items.clear()
            QUEUE_PENDING.dec(len(leftover))
            self._cond.notify_all()
            return leftover
