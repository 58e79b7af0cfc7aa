"""Bounded task queue for Crash Symbolicator.

Runs units of work (tool invocations, dSYM imports) on a shared worker pool
with a fixed concurrency ceiling. Cancellation is cooperative: a task that is
cancelled before it starts never runs its body, and a running task is
expected to check ``is_cancelled`` at its checkpoints.
"""
from __future__ import annotations

import itertools
import threading
from concurrent.futures import ThreadPoolExecutor, Future, wait as futures_wait
from typing import Any, Callable, Iterable, List, Optional


class Task:
    """A single unit of work. Subclasses override ``main``."""

    VERBOSE = False

    _ids = itertools.count(1)

    def __init__(self, name: Optional[str] = None):
        self.task_id = next(Task._ids)
        self.name = name or f"{type(self).__name__}-{self.task_id}"
        self.future: Optional[Future] = None
        self.error: Optional[BaseException] = None
        self.started = False
        self._cancel_event = threading.Event()
        self._callbacks: List[Callable[["Task"], None]] = []
        self._lock = threading.Lock()
        self._finished = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def is_finished(self) -> bool:
        return self._finished

    def cancel(self) -> None:
        """Mark the task cancelled and drop it from the pool if still queued."""
        self._cancel_event.set()
        if self.future is not None:
            self.future.cancel()

    def main(self) -> Any:
        """Body of the unit of work."""
        raise NotImplementedError

    def run(self) -> Any:
        """Entry point used by the worker pool."""
        if self.is_cancelled:
            return None
        self.started = True
        try:
            return self.main()
        except Exception as e:
            # Task bodies never take a pool worker down
            self.error = e
            if Task.VERBOSE:
                print(f"[TASK] {self.name} failed: {type(e).__name__}: {e}")
            return None

    def add_done_callback(self, callback: Callable[["Task"], None]) -> None:
        """Call ``callback(task)`` once the task has finished or was cancelled."""
        with self._lock:
            if not self._finished:
                self._callbacks.append(callback)
                return
        callback(self)

    def _mark_finished(self, _future: Future) -> None:
        with self._lock:
            if self._finished:
                return
            self._finished = True
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                print(f"[TASK] Done callback for {self.name} raised {type(e).__name__}: {e}")


class FunctionTask(Task):
    """Wraps a plain callable. The callable receives the task as first argument."""

    def __init__(self, func: Callable[..., Any], *args, name: Optional[str] = None, **kwargs):
        super().__init__(name=name or getattr(func, "__name__", None))
        self.func = func
        self.args = args
        self.kwargs = kwargs
        self.result: Any = None

    def main(self) -> Any:
        self.result = self.func(self, *self.args, **self.kwargs)
        return self.result


class TaskQueue:
    """Shared FIFO work queue with a fixed concurrency ceiling."""

    MAX_CONCURRENT = 4

    def __init__(self, max_concurrent: Optional[int] = None):
        self.max_concurrent = max_concurrent or self.MAX_CONCURRENT
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent,
            thread_name_prefix="crash-sym",
        )
        self._lock = threading.Lock()
        self._pending: List[Task] = []

    def submit(self, task: Task) -> Future:
        """Enqueue ``task``. Queued tasks start in submission order."""
        with self._lock:
            future = self._executor.submit(task.run)
            task.future = future
            self._pending.append(task)
        if task.is_cancelled:
            # Cancelled before it reached the queue
            future.cancel()
        future.add_done_callback(task._mark_finished)
        future.add_done_callback(lambda _f, t=task: self._forget(t))
        return future

    def submit_function(self, func: Callable[..., Any], *args, **kwargs) -> FunctionTask:
        """Wrap ``func`` in a FunctionTask and enqueue it."""
        task = FunctionTask(func, *args, **kwargs)
        self.submit(task)
        return task

    def cancel(self, task: Task) -> None:
        task.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            tasks = list(self._pending)
        for task in tasks:
            task.cancel()

    def wait(self, tasks: Iterable[Task], timeout: Optional[float] = None) -> bool:
        """Block until every task finished. Returns False on timeout."""
        futures = [t.future for t in tasks if t.future is not None]
        _, not_done = futures_wait(futures, timeout=timeout)
        return not not_done

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _forget(self, task: Task) -> None:
        with self._lock:
            try:
                self._pending.remove(task)
            except ValueError:
                pass
