from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, Literal, TypeVar

from ..errors import WorkQueueFull

R = TypeVar("R")

QueuePolicy = Literal["block", "reject"]

_STOP = object()


class WorkerPool:
    """Fixed number of threads fed from a bounded queue.

    When the queue is full, `policy="block"` makes `submit()` wait for room
    and `policy="reject"` raises `WorkQueueFull` straight away.
    """

    def __init__(
        self,
        workers: int = 3,
        *,
        queue_size: int = 16,
        policy: QueuePolicy = "reject",
        name: str = "meshfeed-worker",
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        if policy not in ("block", "reject"):
            raise ValueError(f"unknown queue policy: {policy!r}")
        self.policy = policy
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._closed = False
        self._threads = [
            threading.Thread(target=self._run, name=f"{name}-{idx}", daemon=True)
            for idx in range(workers)
        ]
        for thread in self._threads:
            thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, fn: Callable[..., R], *args: Any) -> Future[R]:
        future: Future[R] = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("worker pool is closed")
        item = (future, fn, args)
        if self.policy == "block":
            self._queue.put(item)
        else:
            try:
                self._queue.put_nowait(item)
            except queue.Full as exc:
                raise WorkQueueFull(f"work queue full ({self._queue.maxsize} pending)") from exc
        return future

    def close(self, *, wait: bool = True, timeout: float | None = 5.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if not wait:
            # Pending jobs would otherwise keep the stop markers out of a full queue.
            while True:
                try:
                    item = self._queue.get_nowait()
                except queue.Empty:
                    break
                if item is not _STOP:
                    item[0].cancel()
        for _ in self._threads:
            self._queue.put(_STOP)
        if wait:
            for thread in self._threads:
                if thread is not threading.current_thread():
                    thread.join(timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            future, fn, args = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)
