"""
Per-subscriber bounded event buffers.

A Subscription is one viewer of one job. The producer offers events
without ever blocking: a full buffer drops the event and counts it.
The closing events (final status, then done or error) go into a reserved
tail instead of the buffer, so they are never dropped and always come
out last.

get() blocks a thread; get_async() parks an asyncio task instead, woken
from the producer thread through the loop's call_soon_threadsafe.
"""

import asyncio
import threading
import time
from collections import deque
from typing import Callable, Deque, Iterator, List, Optional

from .models import JobEvent

DEFAULT_BUFFER_SIZE = 16


class Subscription:
    """
    Bounded multi-producer, single-consumer event buffer.

    Attributes:
        maxsize: Buffer capacity for non-terminal events
        delivered: Events accepted into the buffer
        dropped: Events rejected because the buffer was full
    """

    def __init__(self, maxsize: int = DEFAULT_BUFFER_SIZE):
        self.maxsize = max(1, maxsize)
        self.delivered = 0
        self.dropped = 0
        self._buffer: Deque[JobEvent] = deque()
        self._cond = threading.Condition()
        self._tail: List[JobEvent] = []
        self._wakers: List[Callable[[], None]] = []
        self._ended = False
        self._closed = False

    def offer(self, event: JobEvent) -> bool:
        """
        Non-blocking put.

        Returns:
            True if buffered, False if dropped or the stream already ended
        """
        with self._cond:
            if self._closed or self._ended:
                return False
            if len(self._buffer) >= self.maxsize:
                self.dropped += 1
                return False
            self._buffer.append(event)
            self.delivered += 1
            self._cond.notify()
            self._wake_locked()
            return True

    def finish(self, *events: JobEvent) -> None:
        """
        End the stream, optionally with closing events.

        Closing events bypass the size limit and are delivered, in order,
        after everything already buffered.
        """
        with self._cond:
            if self._closed or self._ended:
                return
            self._ended = True
            self._tail = list(events)
            self._cond.notify_all()
            self._wake_locked()

    def close(self) -> None:
        """Stop delivery immediately; buffered events are discarded."""
        with self._cond:
            self._closed = True
            self._buffer.clear()
            self._tail = []
            self._cond.notify_all()
            self._wake_locked()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def exhausted(self) -> bool:
        """True once nothing more will ever be returned by get()."""
        with self._cond:
            return self._exhausted()

    def _exhausted(self) -> bool:
        if self._closed:
            return True
        if self._buffer:
            return False
        return self._ended and not self._tail

    def _take(self) -> Optional[JobEvent]:
        if self._closed:
            return None
        if self._buffer:
            return self._buffer.popleft()
        if self._tail:
            return self._tail.pop(0)
        return None

    def _wake_locked(self) -> None:
        wakers, self._wakers = self._wakers, []
        for wake in wakers:
            wake()

    def get(self, timeout: Optional[float] = None) -> Optional[JobEvent]:
        """
        Next event, blocking up to `timeout` seconds (forever if None).

        Returns None on timeout or when the stream is exhausted; check
        .exhausted to tell them apart.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                event = self._take()
                if event is not None or self._exhausted():
                    return event
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

    async def get_async(self, timeout: Optional[float] = None) -> Optional[JobEvent]:
        """
        Awaitable get() for event-loop consumers.

        Holds no thread while waiting. Same return contract as get().
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            ready = asyncio.Event()

            def wake() -> None:
                loop.call_soon_threadsafe(ready.set)

            with self._cond:
                event = self._take()
                if event is not None or self._exhausted():
                    return event
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    return None
                self._wakers.append(wake)

            try:
                await asyncio.wait_for(ready.wait(), remaining)
            except asyncio.TimeoutError:
                return None
            finally:
                with self._cond:
                    if wake in self._wakers:
                        self._wakers.remove(wake)

    def drain(self) -> List[JobEvent]:
        """Take everything available right now without blocking."""
        events = []
        with self._cond:
            while True:
                event = self._take()
                if event is None:
                    return events
                events.append(event)

    def __iter__(self) -> Iterator[JobEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event
