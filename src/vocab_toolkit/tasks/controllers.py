"""Controllers for task CLI commands."""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from vocab_toolkit.config import Settings
from vocab_toolkit.providers.registry import build_providers
from vocab_toolkit.storage.repository import TaskRepository
from vocab_toolkit.tasks.errors import ConfigurationError
from vocab_toolkit.tasks.models import ProviderKind, Results, SubtaskSpec, TaskInfo, TaskView
from vocab_toolkit.tasks.service import TaskService


@dataclass(slots=True)
class TaskSubmitCommand:
    """CLI input for task submission."""

    db_path: Path | None
    task_file: Path
    apply_defaults: bool = True


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None


@dataclass(slots=True)
class TaskShowCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class TaskRerunCommand:
    """CLI input for re-running a stored task."""

    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class TaskRecoverCommand:
    """CLI input for stale run recovery."""

    db_path: Path | None


@dataclass(slots=True)
class HealthCommand:
    """CLI input for the system health check."""

    db_path: Path | None


class TaskCliController:
    """Coordinates submission, inspection and recovery CLI operations."""

    def submit(self, command: TaskSubmitCommand) -> list[str]:
        settings = _settings(command.db_path)
        task_info = load_task_file(command.task_file)
        if command.apply_defaults:
            task_info = apply_settings_defaults(task_info, settings)

        with _repository(settings) as repository:
            service = _service(settings, repository)
            task_id = service.submit_task(task_info)
            results = service.get_results(task_id)

        return [f"Task submitted: task_id={task_id}", *_result_lines(results)]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            tasks = repository.get_all_tasks()
        if not tasks:
            return ["No tasks recorded."]
        return [_task_line(task) for task in tasks]

    def show_task(self, command: TaskShowCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            task = repository.get_task(command.task_id)
            artefacts = (
                repository.list_artefacts(task.vocabulary_id, task.version_id)
                if task is not None
                else []
            )
        if task is None:
            return [f"Task not found: {command.task_id}"]

        lines = [
            f"Task: {task.task_id}",
            f"Vocabulary: {task.vocabulary_id}",
            f"Version: {task.version_id}",
            f"Status: {task.status.value}",
            f"Created: {task.created_at.isoformat()}",
            f"Finished: {task.finished_at.isoformat() if task.finished_at else '-'}",
            f"Error: {task.error_summary or '-'}",
            f"Subtasks: {', '.join(spec.label for spec in task.task_info.subtasks)}",
        ]
        lines.extend(_result_lines(task.results))
        for artefact in artefacts:
            lines.append(f"  artefact kind={artefact.kind} path={artefact.path}")
        return lines

    def rerun(self, command: TaskRerunCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            service = _service(settings, repository)
            task_id = service.rerun(command.task_id)
            results = service.get_results(task_id)
        return [
            f"Task re-run: source_task_id={command.task_id} task_id={task_id}",
            *_result_lines(results),
        ]

    def recover(self, command: TaskRecoverCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            recovered = _service(settings, repository).recover()
        if not recovered:
            return ["No stale tasks found."]
        return [f"Recovered stale tasks: {', '.join(str(task_id) for task_id in recovered)}"]

    def health(self, command: HealthCommand) -> list[str]:
        """Return a JSON list of problems; ``[]`` means healthy."""

        return [json.dumps(check_health(command.db_path), ensure_ascii=False)]


def check_health(db_path: Path | None) -> list[str]:
    problems: list[str] = []
    try:
        settings = Settings.from_env(db_path=db_path)
        settings.validate()
    except ValueError as error:
        return [f"configuration: {error}"]

    try:
        with _repository(settings) as repository:
            repository.get_all_tasks()
    except Exception as error:  # noqa: BLE001
        problems.append(f"database: {error}")

    root = settings.vocabs_root
    if root.exists() and not os.access(root, os.W_OK):
        problems.append(f"vocabs_root: {root} is not writable")
    return problems


def load_task_file(path: Path) -> TaskInfo:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise ConfigurationError(message=f"Cannot read task file {path}: {error}") from error
    except json.JSONDecodeError as error:
        raise ConfigurationError(message=f"Task file {path} is not valid JSON: {error}") from error
    return TaskInfo.from_payload(payload)


def apply_settings_defaults(task_info: TaskInfo, settings: Settings) -> TaskInfo:
    """Fill provider config keys the task leaves unset from environment settings.

    Values present in the task always win.
    """

    subtasks = tuple(
        SubtaskSpec(
            kind=spec.kind,
            config=_with_defaults(spec, settings),
            label=spec.label,
            critical=spec.critical,
            max_attempts=spec.max_attempts,
        )
        for spec in task_info.subtasks
    )
    return task_info.with_subtasks(subtasks)


def _with_defaults(spec: SubtaskSpec, settings: Settings) -> dict[str, Any]:
    config = dict(spec.config)
    defaults: dict[str, Any] = {}
    if spec.kind is ProviderKind.HARVEST and str(config.get("source", "")).lower() == "poolparty":
        defaults = {
            "api_url": settings.poolparty.api_url,
            "username": settings.poolparty.username,
            "password": settings.poolparty.password,
        }
    elif spec.kind is ProviderKind.IMPORT:
        defaults = {
            "solr_url": settings.solr.url,
            "collection": settings.solr.collection,
        }
    elif spec.kind is ProviderKind.SUBJECT_RESOLVE:
        resolvers = dict(settings.subject_resolvers.resolvers)
        task_resolvers = config.get("resolvers")
        if isinstance(task_resolvers, dict):
            resolvers.update(task_resolvers)
            config["resolvers"] = resolvers
        elif task_resolvers is None and resolvers:
            config["resolvers"] = resolvers

    for key, value in defaults.items():
        if value and key not in config:
            config[key] = value
    return config


def _settings(db_path: Path | None) -> Settings:
    try:
        settings = Settings.from_env(db_path=db_path)
        settings.validate()
    except ValueError as error:
        raise ConfigurationError(message=str(error)) from error
    return settings


def _service(settings: Settings, repository: TaskRepository) -> TaskService:
    return TaskService(
        store=repository,
        providers=build_providers(settings, artefact_store=repository),
        vocabs_root=settings.vocabs_root,
        retry_backoff_seconds=settings.tasks.retry_backoff_seconds,
        stale_after=timedelta(seconds=settings.tasks.active_run_stale_after_seconds),
    )


def _task_line(task: TaskView) -> str:
    return (
        f"task_id={task.task_id} vocabulary={task.vocabulary_id} version={task.version_id} "
        f"status={task.status.value} created_at={task.created_at.isoformat()}"
    )


def _result_lines(results: Results | None) -> list[str]:
    if results is None:
        return ["Results: -"]
    lines = [f"Status: {results.status.value if results.status else '-'}"]
    for entry in results.entries:
        detail = f" error_code={entry.error_code}" if entry.error_code else ""
        lines.append(
            f"  {entry.label} kind={entry.kind.value} outcome={entry.outcome} "
            f"attempts={entry.attempts}{detail} message={entry.message or '-'}",
        )
    lines.append(f"Results: {json.dumps(results.as_dict(), ensure_ascii=False)}")
    return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        settings.db_path,
        stale_after=timedelta(seconds=settings.tasks.active_run_stale_after_seconds),
    )
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()
