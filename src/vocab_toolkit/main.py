"""CLI entrypoint for vocab-toolkit."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from vocab_toolkit import __version__
from vocab_toolkit.tasks.controllers import (
    HealthCommand,
    TaskCliController,
    TaskListCommand,
    TaskRecoverCommand,
    TaskRerunCommand,
    TaskShowCommand,
    TaskSubmitCommand,
)
from vocab_toolkit.tasks.errors import ToolkitError

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

CommandT = TypeVar("CommandT")


@click.group()
@click.version_option(version=__version__, prog_name="vocab-toolkit")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for pipeline diagnostics.",
)
def vocab_toolkit(log_level: str) -> None:
    """Vocabulary task pipeline CLI."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@vocab_toolkit.group()
def task() -> None:
    """Task submission and inspection commands."""


@task.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--task-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="JSON task description with vocabulary_id, version_id and subtasks.",
)
@click.option(
    "--no-defaults",
    is_flag=True,
    default=False,
    help="Do not fill provider config from VOCAB_TOOLKIT_* environment settings.",
)
def task_submit(db_path: Path | None, task_file: Path, no_defaults: bool) -> None:
    """Run a task description and print its results."""

    _emit_lines(
        _invoke(
            TASK_CONTROLLER.submit,
            TaskSubmitCommand(
                db_path=db_path,
                task_file=task_file,
                apply_defaults=not no_defaults,
            ),
        ),
    )


@task.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def task_list(db_path: Path | None) -> None:
    """List recorded tasks."""

    _emit_lines(_invoke(TASK_CONTROLLER.list_tasks, TaskListCommand(db_path=db_path)))


@task.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", type=int, required=True, help="Task id.")
def task_show(db_path: Path | None, task_id: int) -> None:
    """Show one task with its results and registered artefacts."""

    _emit_lines(
        _invoke(TASK_CONTROLLER.show_task, TaskShowCommand(db_path=db_path, task_id=task_id)),
    )


@task.command("rerun")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", type=int, required=True, help="Task id to run again.")
def task_rerun(db_path: Path | None, task_id: int) -> None:
    """Submit the stored description of a task as a new task."""

    _emit_lines(
        _invoke(TASK_CONTROLLER.rerun, TaskRerunCommand(db_path=db_path, task_id=task_id)),
    )


@task.command("recover")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def task_recover(db_path: Path | None) -> None:
    """Close running tasks left behind by a crashed process."""

    _emit_lines(_invoke(TASK_CONTROLLER.recover, TaskRecoverCommand(db_path=db_path)))


@vocab_toolkit.command("health")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def health(db_path: Path | None) -> None:
    """Print a JSON list of detected problems; `[]` when healthy."""

    _emit_lines(TASK_CONTROLLER.health(HealthCommand(db_path=db_path)))


def _invoke(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except ToolkitError as error:
        raise click.ClickException(f"{error.code}: {error.message}") from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    vocab_toolkit()
