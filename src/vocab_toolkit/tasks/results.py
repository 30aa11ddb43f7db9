"""Terminal status aggregation for task results."""

from __future__ import annotations

from collections.abc import Iterable

from vocab_toolkit.tasks.models import Results, RunState, TaskStatus


def aggregate_status(succeeded: Iterable[bool], *, aborted: bool) -> TaskStatus:
    """Derive the terminal status from ordered step outcomes.

    Pure function: the same outcome sequence always yields the same status,
    which lets crash recovery recompute it from a stored snapshot.
    """

    if aborted:
        return TaskStatus.ERROR
    flags = list(succeeded)
    if all(flags):
        return TaskStatus.SUCCESS
    return TaskStatus.PARTIAL


def finalize_results(results: Results, *, aborted: bool) -> TaskStatus:
    status = aggregate_status((entry.succeeded for entry in results.entries), aborted=aborted)
    results.finalize(status)
    return status


def terminal_state(status: TaskStatus) -> RunState:
    if status is TaskStatus.SUCCESS:
        return RunState.COMPLETED_SUCCESS
    if status is TaskStatus.PARTIAL:
        return RunState.COMPLETED_PARTIAL
    return RunState.ABORTED
