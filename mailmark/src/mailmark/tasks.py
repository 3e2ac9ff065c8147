"""Run operations as isolated worker tasks and poll their outcomes.

What:
  Provide :class:`TaskCoordinator`, which starts each submitted operation in
  its own thread and hands its single :class:`~mailmark.actions.ActionOutcome`
  back through a one-way queue that the coordinating loop polls.

Why:
  A supervising shell (menu, tray icon, scheduler) must stay responsive while
  an export runs for minutes. Workers never share state with each other or
  with the coordinator; the queue is the only channel between them.

How:
  Each worker wraps the callable, converts any escaping exception into an
  ``error`` outcome, and puts exactly one :class:`TaskResult` on a
  :class:`queue.Queue`. :meth:`TaskCoordinator.poll` drains the queue with
  ``get_nowait`` and never blocks.

Interfaces:
  :class:`TaskResult`, :class:`TaskCoordinator`, :func:`describe`.

Invariants & Safety:
  - Every submitted task produces exactly one result.
  - Tasks are not cancellable once started.
  - Callers must not submit two exports of the same account concurrently;
    the coordinator does not serialise them.
"""
from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from .actions import ActionOutcome
from .utils.logging import JsonLogger, get_logger


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one worker tagged with the task name."""

    name: str
    outcome: ActionOutcome


def describe(outcome: ActionOutcome) -> str:
    """Render an outcome as one display line, dispatching on its ``kind``."""

    match outcome.kind:
        case "success":
            return f"[ok] {outcome.title}: {outcome.message}"
        case "imported":
            return f"[partial] {outcome.title}: {outcome.message}"
        case "error":
            return f"[error] {outcome.title}: {outcome.message}"
    raise ValueError(f"unknown outcome kind: {outcome.kind!r}")


class TaskCoordinator:
    """Start worker threads and collect their results without blocking."""

    def __init__(self, logger: Optional[JsonLogger] = None):
        self._results: "queue.Queue[TaskResult]" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._logger = logger or get_logger("mailmark.tasks")

    @property
    def pending(self) -> int:
        """Number of workers that have not yet finished."""

        with self._lock:
            self._threads = [thread for thread in self._threads if thread.is_alive()]
            return len(self._threads)

    def submit(self, name: str, fn: Callable[[], ActionOutcome]) -> threading.Thread:
        """Run ``fn`` in a daemon thread; its outcome arrives through :meth:`poll`."""

        thread = threading.Thread(
            target=self._run, args=(name, fn), name=f"mailmark-{name}", daemon=True
        )
        with self._lock:
            self._threads.append(thread)
        self._logger.info("task_started", task=name)
        thread.start()
        return thread

    def _run(self, name: str, fn: Callable[[], ActionOutcome]) -> None:
        try:
            outcome = fn()
        except Exception as exc:
            self._logger.error("task_crashed", task=name, error=f"{type(exc).__name__}: {exc}")
            outcome = ActionOutcome.error("Task failed", f"{name}: {exc}")
        self._results.put(TaskResult(name=name, outcome=outcome))

    def poll(self) -> List[TaskResult]:
        """Return every result available right now, possibly none."""

        results: List[TaskResult] = []
        while True:
            try:
                results.append(self._results.get_nowait())
            except queue.Empty:
                return results

    def wait(self, timeout: Optional[float] = None) -> List[TaskResult]:
        """Join all workers, then drain results. Intended for scripts and tests."""

        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
        return self.poll()
