"""
Reconcile work queue.

A de-duplicating FIFO of keys shared by the reconcile workers:
- a key waiting in the queue is only queued once, however often it is added
- a key is never handed to two workers at the same time
- a key added while it is being processed is queued again once ``done()``
  is called, so the latest trigger is never lost
"""

import threading
from collections import deque
from typing import Deque, Optional, Set


class WorkQueue:
    def __init__(self):
        self._cond = threading.Condition()
        self._queue: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._shutting_down = False

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Block until a key is available and mark it as processing.

        Returns None on timeout or once the queue is shut down and drained.
        Callers must call ``done(key)`` for every key returned.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._queue or self._shutting_down, timeout=timeout):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def processing(self) -> int:
        with self._cond:
            return len(self._processing)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
