"""Sequential execution of a task's subtasks against providers."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from vocab_toolkit.providers.base import Provider
from vocab_toolkit.tasks.context import RunContext
from vocab_toolkit.tasks.errors import ConcurrencyConflictError, ConfigurationError
from vocab_toolkit.tasks.models import (
    ProviderKind,
    ResultEntry,
    Results,
    RunState,
    StepOutcome,
    SubtaskSpec,
    TaskInfo,
    TaskStatus,
)
from vocab_toolkit.tasks.results import finalize_results, terminal_state

logger = logging.getLogger(__name__)


class VersionRunGuard:
    """Tracks vocabulary versions with a run in progress within this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[tuple[str, str]] = set()

    def acquire(self, vocabulary_id: str, version_id: str) -> None:
        key = (vocabulary_id, version_id)
        with self._lock:
            if key in self._active:
                raise ConcurrencyConflictError(
                    message="A run is already active for this vocabulary version "
                    f"(vocabulary_id={vocabulary_id}, version_id={version_id}).",
                    vocabulary_id=vocabulary_id,
                    version_id=version_id,
                )
            self._active.add(key)

    def release(self, vocabulary_id: str, version_id: str) -> None:
        with self._lock:
            self._active.discard((vocabulary_id, version_id))

    def is_active(self, vocabulary_id: str, version_id: str) -> bool:
        with self._lock:
            return (vocabulary_id, version_id) in self._active


@dataclass(frozen=True, slots=True)
class PlannedStep:
    """Subtask bound to the provider that executes it."""

    spec: SubtaskSpec
    provider: Provider


class TaskRunner:
    """Drives one TaskInfo through its subtasks.

    ``PENDING -> RUNNING(i) -> COMPLETED_SUCCESS | COMPLETED_PARTIAL | ABORTED``.
    A failed critical subtask aborts the run; later CLEANUP subtasks still
    execute. A runner instance runs at most once.
    """

    def __init__(
        self,
        task_info: TaskInfo,
        *,
        providers: Mapping[ProviderKind, Provider],
        vocabs_root: Path,
        guard: VersionRunGuard | None = None,
        retry_backoff_seconds: float = 0.0,
        heartbeat: Callable[[Results], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.task_info = task_info
        self.plan = _resolve_plan(task_info, providers)
        self.context = RunContext(
            vocabulary_id=task_info.vocabulary_id,
            version_id=task_info.version_id,
            vocabs_root=vocabs_root,
        )
        self.results = Results()
        self.state = RunState.PENDING
        self.current_index: int | None = None
        self._guard = guard or VersionRunGuard()
        self._retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self.heartbeat = heartbeat
        self._reserved = False
        self._sleep = sleep

    @property
    def reserved(self) -> bool:
        return self._reserved

    def reserve(self) -> None:
        """Claim the version guard ahead of ``run``; raises ConcurrencyConflictError."""

        if self._reserved:
            return
        self._guard.acquire(*self.task_info.version_key)
        self._reserved = True

    def release(self) -> None:
        if not self._reserved:
            return
        self._guard.release(*self.task_info.version_key)
        self._reserved = False

    def run(self) -> Results:
        """Execute all subtasks; raises ConcurrencyConflictError if the version is busy.

        A reservation taken with ``reserve`` before the call is left for the
        caller to release; otherwise the guard is held only for the run.
        """

        if self.state is not RunState.PENDING:
            raise RuntimeError(f"TaskRunner already used (state={self.state.value}).")

        owns_reservation = not self._reserved
        self.reserve()
        try:
            status = self._run_plan()
        finally:
            self.context.release_scratch()
            if owns_reservation:
                self.release()

        vocabulary_id, version_id = self.task_info.version_key
        logger.info(
            "Task run finished (vocabulary=%s version=%s status=%s entries=%d).",
            vocabulary_id,
            version_id,
            status.value,
            len(self.results.entries),
        )
        return self.results

    def _run_plan(self) -> TaskStatus:
        vocabulary_id, version_id = self.task_info.version_key
        self.state = RunState.RUNNING
        aborted = False
        for index, step in enumerate(self.plan):
            if aborted and not step.spec.is_cleanup:
                logger.info(
                    "Skipping subtask %s after abort (vocabulary=%s version=%s).",
                    step.spec.label,
                    vocabulary_id,
                    version_id,
                )
                continue

            self.current_index = index
            self._beat()
            entry = self._run_step(step)
            self.results.append(entry)
            if entry.succeeded:
                self.context.commit(entry.artifacts)
            elif step.spec.critical and not aborted:
                aborted = True
                logger.warning(
                    "Critical subtask %s failed; aborting run "
                    "(vocabulary=%s version=%s error_code=%s).",
                    step.spec.label,
                    vocabulary_id,
                    version_id,
                    entry.error_code,
                )

        status = finalize_results(self.results, aborted=aborted)
        self.state = terminal_state(status)
        self.current_index = None
        self._beat()
        return status

    def _run_step(self, step: PlannedStep) -> ResultEntry:
        spec = step.spec
        attempts = 0
        while True:
            attempts += 1
            outcome = self._invoke(step)
            if outcome.succeeded or not outcome.retryable or attempts >= spec.max_attempts:
                break
            backoff = self._retry_backoff_seconds * attempts
            logger.info(
                "Retrying subtask %s after retryable failure (attempt=%d/%d backoff=%.1fs): %s",
                spec.label,
                attempts,
                spec.max_attempts,
                backoff,
                outcome.message,
            )
            if backoff > 0:
                self._sleep(backoff)

        return ResultEntry(
            label=spec.label,
            kind=spec.kind,
            succeeded=outcome.succeeded,
            message=outcome.message,
            artifacts=dict(outcome.artifacts) if outcome.succeeded else {},
            error_code=outcome.error_code,
            attempts=attempts,
        )

    def _invoke(self, step: PlannedStep) -> StepOutcome:
        try:
            return step.provider.execute(step.spec.config, self.context)
        except Exception as error:  # noqa: BLE001
            logger.exception("Provider for subtask %s raised unexpectedly.", step.spec.label)
            return StepOutcome.failure(
                f"Unexpected provider error: {error}",
                code="unexpected",
            )

    def _beat(self) -> None:
        if self.heartbeat is None:
            return
        try:
            self.heartbeat(self.results)
        except Exception as error:  # noqa: BLE001
            logger.warning("Task heartbeat failed: %s", error)


def _resolve_plan(
    task_info: TaskInfo,
    providers: Mapping[ProviderKind, Provider],
) -> tuple[PlannedStep, ...]:
    plan: list[PlannedStep] = []
    for spec in task_info.subtasks:
        provider = providers.get(spec.kind)
        if provider is None:
            raise ConfigurationError(
                message=f"No provider registered for subtask kind {spec.kind.value}.",
            )
        plan.append(PlannedStep(spec=spec, provider=provider))
    return tuple(plan)
