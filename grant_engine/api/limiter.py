"""
Bounded concurrency limiter for calls into external services.

Requests beyond the limit wait in arrival order (FIFO); nothing is rejected.
"""

import logging
import threading
from collections import deque
from contextlib import contextmanager
from typing import Deque, Iterator

logger = logging.getLogger(__name__)


class FifoLimiter:
    """
    Counting limiter with first-come-first-served admission.

    Usage:
        limiter = FifoLimiter(4)
        with limiter.slot():
            call_backend()
    """

    def __init__(self, max_concurrent: int):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._active = 0
        self._waiting: Deque[object] = deque()
        self._cond = threading.Condition()

    @property
    def active(self) -> int:
        with self._cond:
            return self._active

    @property
    def waiting(self) -> int:
        with self._cond:
            return len(self._waiting)

    def acquire(self) -> None:
        ticket = object()
        with self._cond:
            self._waiting.append(ticket)
            if len(self._waiting) > 1 or self._active >= self.max_concurrent:
                logger.debug(f"Queued for backend slot ({len(self._waiting)} waiting)")
            while self._waiting[0] is not ticket or self._active >= self.max_concurrent:
                self._cond.wait()
            self._waiting.popleft()
            self._active += 1
            # The next ticket may also fit if several slots are free
            self._cond.notify_all()

    def release(self) -> None:
        with self._cond:
            if self._active <= 0:
                raise RuntimeError("release() without matching acquire()")
            self._active -= 1
            self._cond.notify_all()

    @contextmanager
    def slot(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()
