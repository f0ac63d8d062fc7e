"""Process-wide completion tracking for worker threads"""

import threading
import time
from typing import Optional


class CompletionTracker:
    """
    Counts workers that have left their request loop.

    Works as a wait-group: every worker calls mark_done() exactly once and
    the coordinating thread waits until the count reaches the number of
    workers. The count is never decremented.
    """

    def __init__(self, expected: int):
        if expected < 1:
            raise ValueError("expected must be at least 1")
        self.expected = expected
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def mark_done(self) -> int:
        """Record one finished worker, returns the new count"""
        with self._lock:
            self._count += 1
            return self._count

    def is_complete(self) -> bool:
        return self.count >= self.expected

    def wait(self, timeout: Optional[float] = None, poll_interval: float = 1e-6) -> bool:
        """
        Poll until every worker is done.

        Returns True on completion, False if timeout elapsed first. With no
        timeout this only returns once all workers have finished, which never
        happens for unbounded runs unless they are stopped.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_complete():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)
        return True
