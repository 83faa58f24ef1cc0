"""Bounded FIFO hand-off queue between request handlers and workers.

Terms used in this file:
- Capacity: how many items may wait untaken before `put` blocks.
  Capacity 0 is a rendezvous; `put` returns only once a consumer took the item.
- Close: stop accepting new items; consumers drain what is queued, then stop.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Generic, TypeVar

T = TypeVar("T")


class QueueClosedError(RuntimeError):
    """Raised when putting onto a queue that no longer accepts work."""


class WorkQueue(Generic[T]):
    def __init__(self, capacity: int = 0) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self.capacity = capacity
        self._items: deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False
        # Sequence numbers: items ever put, and items ever taken.
        self._put_count = 0
        self._taken_count = 0

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, item: T) -> None:
        """Append `item`, then block until it fits in the buffer or is taken."""
        with self._cond:
            if self._closed:
                raise QueueClosedError("queue is closed")
            self._items.append(item)
            self._put_count += 1
            position = self._put_count
            self._cond.notify_all()
            # Untaken items up to and including ours must fit in the buffer.
            while position - self._taken_count > self.capacity:
                self._cond.wait()

    def get(self) -> T | None:
        """Block for the next item; return None once closed and drained."""
        with self._cond:
            while not self._items:
                if self._closed:
                    return None
                self._cond.wait()
            item = self._items.popleft()
            self._taken_count += 1
            self._cond.notify_all()
            return item

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()
