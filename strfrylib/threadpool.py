"""A fixed pool of worker threads, each with its own message inbox."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

M = TypeVar("M")


class Inbox(Generic[M]):
    """Thread-safe queue whose consumer takes everything pending at once."""

    def __init__(self) -> None:
        self._items: deque[M] = deque()
        self._cond = threading.Condition()

    def push(self, message: M) -> None:
        with self._cond:
            self._items.append(message)
            self._cond.notify()

    def push_all(self, messages: Iterable[M]) -> None:
        with self._cond:
            self._items.extend(messages)
            self._cond.notify()

    def pop_all(self) -> list[M]:
        """Block until at least one message is pending, then take them all."""
        with self._cond:
            while not self._items:
                self._cond.wait()
            out = list(self._items)
            self._items.clear()
            return out

    def pop_all_no_wait(self) -> list[M]:
        with self._cond:
            out = list(self._items)
            self._items.clear()
            return out


@dataclass(eq=False)
class WorkerThread(Generic[M]):
    """One pool member: its index, name, inbox and running thread."""

    id: int
    name: str
    inbox: Inbox[M] = field(default_factory=Inbox)
    thread: threading.Thread | None = None


class ThreadPool(Generic[M]):
    """Routes messages to worker threads by key."""

    def __init__(self) -> None:
        self.num_threads = 0
        self.pool: list[WorkerThread[M]] = []

    def init(self, name: str, num_threads: int, cb: Callable[[WorkerThread[M]], None]) -> None:
        """Start ``num_threads`` threads, each running ``cb(worker)``."""
        if num_threads <= 0:
            raise ValueError("must have more than 0 threads")

        self.num_threads = num_threads

        for i in range(num_threads):
            my_name = name if num_threads == 1 else f"{name} {i}"
            worker: WorkerThread[M] = WorkerThread(id=i, name=my_name)
            self.pool.append(worker)
            worker.thread = threading.Thread(target=cb, args=(worker,), name=my_name, daemon=True)
            worker.thread.start()

    def _worker_for(self, key: int) -> WorkerThread[M]:
        if not self.pool:
            raise RuntimeError("thread pool not initialised")
        return self.pool[key % self.num_threads]

    def dispatch(self, key: int, message: M) -> None:
        self._worker_for(key).inbox.push(message)

    def dispatch_multi(self, key: int, messages: list[M]) -> None:
        """Hand every message to one worker; ``messages`` is emptied."""
        self._worker_for(key).inbox.push_all(messages)
        messages.clear()

    def dispatch_to_all(self, cb: Callable[[], M]) -> None:
        """Send each worker a fresh message produced by ``cb()``."""
        for worker in self.pool:
            worker.inbox.push(cb())

    def join(self) -> None:
        for worker in self.pool:
            if worker.thread is not None:
                worker.thread.join()

    def __enter__(self) -> ThreadPool[M]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.join()