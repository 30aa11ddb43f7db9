from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from vocab_toolkit.main import vocab_toolkit
from vocab_toolkit.storage.repository import TaskRepository
from vocab_toolkit.tasks.models import VersionStatus

pytestmark = [
    allure.epic("Task Pipeline"),
    allure.feature("CLI"),
]


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("VOCAB_TOOLKIT_VOCABS_ROOT", str(tmp_path / "vocabs"))
    monkeypatch.delenv("VOCAB_TOOLKIT_SOLR_URL", raising=False)
    monkeypatch.delenv("VOCAB_TOOLKIT_SUBJECT_RESOLVERS", raising=False)
    return tmp_path


def _write_task(path: Path, harvest_file: Path) -> Path:
    path.write_text(
        json.dumps(
            {
                "vocabulary_id": "fauna",
                "version_id": "v1",
                "subtasks": [
                    {"kind": "harvest", "config": {"source": "file", "path": str(harvest_file)}},
                    {"kind": "transform", "config": {"transform": "json_tree"}},
                    {"kind": "import", "config": {"targets": ["registry"]}},
                    {"kind": "cleanup"},
                ],
            },
        ),
        encoding="utf-8",
    )
    return path


def test_task_submit_show_list_and_rerun(cli_env: Path, harvest_file: Path) -> None:
    db_path = cli_env / "cli.db"
    task_file = _write_task(cli_env / "task.json", harvest_file)
    runner = CliRunner()

    submitted = runner.invoke(
        vocab_toolkit,
        [
            "--log-level",
            "info",
            "task",
            "submit",
            "--db-path",
            str(db_path),
            "--task-file",
            str(task_file),
        ],
    )

    assert submitted.exit_code == 0, submitted.output
    assert "Task submitted: task_id=1" in submitted.output
    assert "Status: success" in submitted.output
    results_line = next(
        line for line in submitted.output.splitlines() if line.startswith("Results: ")
    )
    flat = json.loads(results_line.removeprefix("Results: "))
    assert flat["status"] == "success"
    assert flat["harvest"] == flat["transform"] == flat["import"] == flat["cleanup"] == "success"
    assert Path(flat["concepts_tree"]).is_file()

    shown = runner.invoke(
        vocab_toolkit,
        ["task", "show", "--db-path", str(db_path), "--task-id", "1"],
    )
    assert shown.exit_code == 0, shown.output
    assert "Status: success" in shown.output
    assert "artefact kind=concepts_tree" in shown.output

    rerun = runner.invoke(
        vocab_toolkit,
        ["task", "rerun", "--db-path", str(db_path), "--task-id", "1"],
    )
    assert rerun.exit_code == 0, rerun.output
    assert "source_task_id=1 task_id=2" in rerun.output

    listed = runner.invoke(vocab_toolkit, ["task", "list", "--db-path", str(db_path)])
    assert listed.exit_code == 0, listed.output
    assert len(listed.output.strip().splitlines()) == 2

    repository = TaskRepository(db_path)
    assert repository.get_version_status("fauna", "v1") is VersionStatus.PUBLISHED
    repository.close()


def test_task_submit_reports_configuration_errors(cli_env: Path) -> None:
    task_file = cli_env / "broken.json"
    task_file.write_text(json.dumps({"vocabulary_id": "fauna", "version_id": "v1"}))

    result = CliRunner().invoke(
        vocab_toolkit,
        ["task", "submit", "--db-path", str(cli_env / "cli.db"), "--task-file", str(task_file)],
    )

    assert result.exit_code == 1
    assert "configuration: Task 'subtasks' must be a list." in result.output


def test_task_show_unknown_and_recover_without_stale_tasks(cli_env: Path) -> None:
    db_path = cli_env / "cli.db"
    runner = CliRunner()

    shown = runner.invoke(
        vocab_toolkit,
        ["task", "show", "--db-path", str(db_path), "--task-id", "7"],
    )
    recovered = runner.invoke(vocab_toolkit, ["task", "recover", "--db-path", str(db_path)])

    assert shown.exit_code == 0
    assert "Task not found: 7" in shown.output
    assert recovered.exit_code == 0
    assert "No stale tasks found." in recovered.output


def test_health_prints_empty_list_when_healthy(cli_env: Path) -> None:
    result = CliRunner().invoke(vocab_toolkit, ["health", "--db-path", str(cli_env / "h.db")])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == []


def test_health_reports_invalid_configuration(cli_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("VOCAB_TOOLKIT_HTTP_TIMEOUT_SECONDS", "0")

    result = CliRunner().invoke(vocab_toolkit, ["health", "--db-path", str(cli_env / "h.db")])

    problems = json.loads(result.output)
    assert len(problems) == 1
    assert problems[0].startswith("configuration:")
