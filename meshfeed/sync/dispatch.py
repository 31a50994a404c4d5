from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from functools import partial
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoopContext:
    """A single thread that runs posted callbacks in order.

    One instance plays the part of the UI thread; others can be used for
    background work that must stay serialized. Callbacks posted before
    `start()` are queued and run once the loop starts. Anything posted to, or
    still pending on, a closed loop is dropped.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._cond = threading.Condition()
        self._ready: deque[Callable[[], None]] = deque()
        self._delayed: list[tuple[float, int, Callable[[], None]]] = []
        self._seq = itertools.count()
        self._thread: threading.Thread | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def is_current(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError(f"loop {self.name} is closed")
            if self._thread is not None:
                return
            self._thread = threading.Thread(
                target=self._run, name=f"meshfeed-{self.name}", daemon=True
            )
            self._thread.start()

    def close(self, timeout: float | None = 5.0) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            dropped = len(self._ready) + len(self._delayed)
            self._ready.clear()
            self._delayed.clear()
            self._cond.notify_all()
        if dropped:
            logger.debug("loop %s closed with %d pending callbacks dropped", self.name, dropped)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def post(self, callback: Callable[[T], None], payload: T) -> bool:
        return self._enqueue(partial(callback, payload), 0.0)

    def post_delayed(self, callback: Callable[[T], None], payload: T, delay_s: float) -> bool:
        return self._enqueue(partial(callback, payload), max(0.0, delay_s))

    def drain(self, timeout: float = 5.0) -> bool:
        """Wait until every undelayed callback posted so far has run."""
        if self.is_current():
            raise RuntimeError("drain() would deadlock on its own loop")
        done = threading.Event()
        if not self.post(lambda _: done.set(), None):
            return False
        return done.wait(timeout)

    def _enqueue(self, task: Callable[[], None], delay_s: float) -> bool:
        with self._cond:
            if self._closed:
                logger.debug("loop %s is closed; dropping callback", self.name)
                return False
            if delay_s > 0:
                due = time.monotonic() + delay_s
                heapq.heappush(self._delayed, (due, next(self._seq), task))
            else:
                self._ready.append(task)
            self._cond.notify()
        return True

    def _next_task(self) -> Callable[[], None] | None:
        with self._cond:
            while True:
                if self._closed:
                    return None
                now = time.monotonic()
                while self._delayed and self._delayed[0][0] <= now:
                    _due, _seq, task = heapq.heappop(self._delayed)
                    self._ready.append(task)
                if self._ready:
                    return self._ready.popleft()
                wait_s = self._delayed[0][0] - now if self._delayed else None
                self._cond.wait(wait_s)

    def _run(self) -> None:
        while True:
            task = self._next_task()
            if task is None:
                return
            try:
                task()
            except Exception as exc:
                logger.exception("loop %s callback failed", self.name, exc_info=exc)


def post(target: LoopContext, callback: Callable[[T], None], payload: T) -> bool:
    return target.post(callback, payload)


def post_delayed(
    target: LoopContext, callback: Callable[[T], None], payload: T, delay_s: float
) -> bool:
    return target.post_delayed(callback, payload, delay_s)
