"""Use-case service for submitting and tracking vocabulary tasks."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import timedelta
from pathlib import Path

from vocab_toolkit.providers.base import Provider
from vocab_toolkit.storage.repository import TaskStore
from vocab_toolkit.tasks.errors import ConfigurationError, PersistenceError
from vocab_toolkit.tasks.models import ProviderKind, Results, TaskInfo
from vocab_toolkit.tasks.runner import TaskRunner, VersionRunGuard

logger = logging.getLogger(__name__)


class TaskService:
    """Coordinates the version guard, task records and runner execution.

    ``submit_task`` returns the persisted task id. With ``wait=False`` the
    run continues on a daemon thread; ``wait(task_id)`` joins it.
    """

    def __init__(
        self,
        *,
        store: TaskStore,
        providers: Mapping[ProviderKind, Provider],
        vocabs_root: Path,
        guard: VersionRunGuard | None = None,
        retry_backoff_seconds: float = 0.0,
        stale_after: timedelta = timedelta(minutes=30),
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.store = store
        self.providers = providers
        self.vocabs_root = vocabs_root
        self.guard = guard or VersionRunGuard()
        self.retry_backoff_seconds = retry_backoff_seconds
        self.stale_after = stale_after
        self._sleep = sleep
        self._lock = threading.Lock()
        self._threads: dict[int, threading.Thread] = {}
        self._unrecorded: dict[int, Results] = {}
        self._failures: dict[int, PersistenceError] = {}

    def submit_task(self, task_info: TaskInfo, *, wait: bool = True) -> int:
        """Accept a task, record it as running and execute it.

        Raises ConfigurationError when a subtask kind has no provider,
        ConcurrencyConflictError when the version already has an active run
        and PersistenceError when the store cannot record the task.
        """

        runner = self._build_runner(task_info)
        runner.reserve()
        try:
            task_id = self.store.create_task(task_info)
        except BaseException:
            runner.release()
            raise

        runner.heartbeat = lambda results: self.store.touch_task(task_id, results)
        logger.info(
            "Task accepted (task_id=%d vocabulary=%s version=%s subtasks=%d).",
            task_id,
            task_info.vocabulary_id,
            task_info.version_id,
            len(task_info.subtasks),
        )

        if wait:
            self._execute(task_id, runner)
            return task_id

        thread = threading.Thread(
            target=self._execute_in_background,
            args=(task_id, runner),
            name=f"vocab-task-{task_id}",
            daemon=True,
        )
        with self._lock:
            self._threads[task_id] = thread
        thread.start()
        return task_id

    def wait(self, task_id: int, timeout: float | None = None) -> Results | None:
        """Block until a background run finishes and return its results."""

        with self._lock:
            thread = self._threads.get(task_id)
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                return None
            with self._lock:
                self._threads.pop(task_id, None)
                failure = self._failures.pop(task_id, None)
            if failure is not None:
                raise failure
        return self.get_results(task_id)

    def get_results(self, task_id: int) -> Results | None:
        """Return finalized results, or None while the task is unknown or running."""

        with self._lock:
            unrecorded = self._unrecorded.get(task_id)
        if unrecorded is not None:
            return unrecorded
        view = self.store.get_task(task_id)
        if view is None or view.results is None or not view.results.finalized:
            return None
        return view.results

    def rerun(self, task_id: int, *, wait: bool = True) -> int:
        """Submit the stored TaskInfo snapshot of ``task_id`` as a new task."""

        view = self.store.get_task(task_id)
        if view is None:
            raise ConfigurationError(message=f"Task not found: {task_id}")
        logger.info("Re-running task %d as a new submission.", task_id)
        return self.submit_task(view.task_info, wait=wait)

    def recover(self) -> list[int]:
        """Close running tasks whose heartbeat is older than ``stale_after``."""

        recovered = self.store.recover_stale_tasks(stale_after=self.stale_after)
        if recovered:
            logger.warning("Recovered %d stale tasks: %s", len(recovered), recovered)
        return recovered

    def _build_runner(self, task_info: TaskInfo) -> TaskRunner:
        extra = {"sleep": self._sleep} if self._sleep is not None else {}
        return TaskRunner(
            task_info,
            providers=self.providers,
            vocabs_root=self.vocabs_root,
            guard=self.guard,
            retry_backoff_seconds=self.retry_backoff_seconds,
            **extra,
        )

    def _execute(self, task_id: int, runner: TaskRunner) -> Results:
        try:
            results = runner.run()
            try:
                self.store.complete_task(task_id, results)
            except PersistenceError as error:
                with self._lock:
                    self._unrecorded[task_id] = results
                error.task_id = task_id
                error.results = results
                logger.error(
                    "Task %d finished with status=%s but could not be recorded: %s",
                    task_id,
                    results.status.value if results.status else "-",
                    error.message,
                )
                raise
        finally:
            runner.release()
        return results

    def _execute_in_background(self, task_id: int, runner: TaskRunner) -> None:
        try:
            self._execute(task_id, runner)
        except PersistenceError as error:
            with self._lock:
                self._failures[task_id] = error
        except Exception:  # noqa: BLE001
            logger.exception("Background run of task %d failed unexpectedly.", task_id)
