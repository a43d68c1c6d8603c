"""
Deadline-ordered eviction scheduler.

Jobs are evicted a fixed time after they finish. Deadlines live in one
heap keyed by job id; run_due() fires everything whose deadline passed.
The clock is injectable, so tests advance a ManualClock and call
run_due() instead of sleeping. In the service a background thread
calls run_due() whenever the earliest deadline comes up.
"""

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds


class EvictionScheduler:
    """
    Run one action per key at a deadline, at most once.

    Args:
        clock: Monotonic time source in seconds
        max_wait: Upper bound on one background sleep
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_wait: float = 1.0):
        self._clock = clock
        self._max_wait = max_wait
        self._heap: List[Tuple[float, int, str]] = []
        self._actions: Dict[str, Tuple[float, Callable[[], None]]] = {}
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    def schedule(self, key: str, delay: float, action: Callable[[], None]) -> bool:
        """
        Schedule `action` to run `delay` seconds from now.

        Returns:
            False if `key` is already scheduled (the first schedule wins)
        """
        with self._cond:
            if key in self._actions:
                return False
            deadline = self._clock() + max(0.0, delay)
            self._actions[key] = (deadline, action)
            heapq.heappush(self._heap, (deadline, next(self._seq), key))
            self._cond.notify()
        logger.debug(f"[Eviction] {key} scheduled in {delay:g}s")
        return True

    def cancel(self, key: str) -> bool:
        with self._cond:
            return self._actions.pop(key, None) is not None

    def pending(self) -> List[str]:
        with self._cond:
            return list(self._actions)

    def next_deadline(self) -> Optional[float]:
        with self._cond:
            self._prune()
            return self._heap[0][0] if self._heap else None

    def _prune(self) -> None:
        # Drop heap entries whose key was cancelled or rescheduled
        while self._heap:
            deadline, _, key = self._heap[0]
            entry = self._actions.get(key)
            if entry is not None and entry[0] == deadline:
                return
            heapq.heappop(self._heap)

    def _pop_due(self) -> List[Tuple[str, Callable[[], None]]]:
        due = []
        now = self._clock()
        while True:
            self._prune()
            if not self._heap or self._heap[0][0] > now:
                return due
            _, _, key = heapq.heappop(self._heap)
            _, action = self._actions.pop(key)
            due.append((key, action))

    def run_due(self) -> int:
        """
        Fire every action whose deadline has passed.

        Actions run outside the scheduler lock, in deadline order.

        Returns:
            Number of actions fired
        """
        with self._cond:
            due = self._pop_due()
        for key, action in due:
            try:
                action()
            except Exception as e:
                logger.exception(f"[Eviction] Action for {key} failed: {e}")
        return len(due)

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._cond:
            if self._thread is not None:
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._loop, name="eviction", daemon=True)
            self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._cond:
            thread = self._thread
            self._thread = None
            self._stopping = True
            self._cond.notify_all()
        if thread is not None:
            thread.join(timeout)

    def _loop(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
                self._prune()
                wait = self._max_wait
                if self._heap:
                    wait = min(wait, max(0.0, self._heap[0][0] - self._clock()))
                if wait > 0:
                    self._cond.wait(wait)
                if self._stopping:
                    return
            self.run_due()
