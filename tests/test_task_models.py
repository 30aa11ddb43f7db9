from __future__ import annotations

import allure
import pytest

from vocab_toolkit.tasks.errors import ConfigurationError
from vocab_toolkit.tasks.models import (
    ProviderKind,
    ResultEntry,
    Results,
    SubtaskSpec,
    TaskInfo,
    TaskStatus,
)

pytestmark = [
    allure.epic("Task Pipeline"),
    allure.feature("Task Descriptions"),
]


def _payload(**overrides):
    payload = {
        "vocabulary_id": "fauna",
        "version_id": "v1",
        "subtasks": [
            {"kind": "harvest", "config": {"source": "file", "path": "/tmp/x.json"}},
            {"kind": "TRANSFORM", "config": {"transform": "json_tree"}},
            {"kind": "transform", "config": {"transform": "json_list"}},
            {"kind": "cleanup"},
        ],
    }
    payload.update(overrides)
    return payload


def test_task_info_from_payload_assigns_default_labels_and_criticality() -> None:
    task = TaskInfo.from_payload(_payload())

    assert [spec.label for spec in task.subtasks] == [
        "harvest",
        "transform",
        "transform_2",
        "cleanup",
    ]
    assert [spec.critical for spec in task.subtasks] == [True, False, False, False]
    assert task.version_key == ("fauna", "v1")


def test_task_info_payload_round_trip_keeps_labels() -> None:
    task = TaskInfo.from_payload(_payload())
    restored = TaskInfo.from_payload(task.to_payload())

    assert restored == task


def test_subtask_config_is_read_only() -> None:
    spec = SubtaskSpec(kind=ProviderKind.HARVEST, config={"source": "file"})

    with pytest.raises(TypeError):
        spec.config["source"] = "sparql"  # type: ignore[index]


def test_explicit_labels_and_critical_flags_are_kept() -> None:
    task = TaskInfo.from_payload(
        _payload(
            subtasks=[
                {"kind": "harvest", "label": "pull", "critical": False},
                {"kind": "import", "label": "publish", "max_attempts": 3},
            ],
        ),
    )

    pull, publish = task.subtasks
    assert (pull.label, pull.critical) == ("pull", False)
    assert (publish.label, publish.critical, publish.max_attempts) == ("publish", True, 3)


@pytest.mark.parametrize(
    ("overrides", "match"),
    [
        ({"subtasks": []}, "at least one subtask"),
        ({"subtasks": "harvest"}, "must be a list"),
        ({"vocabulary_id": ""}, "vocabulary_id"),
        ({"version_id": "../escape"}, "version_id"),
        ({"subtasks": [{"kind": "publish"}]}, "Unknown subtask kind"),
        ({"subtasks": [{"kind": "harvest", "label": "status"}]}, "reserved"),
        (
            {"subtasks": [{"kind": "harvest", "label": "a"}, {"kind": "cleanup", "label": "a"}]},
            "Duplicate subtask label",
        ),
        ({"subtasks": [{"kind": "harvest", "max_attempts": 0}]}, "max_attempts"),
        ({"subtasks": [{"kind": "harvest", "critical": "yes"}]}, "critical"),
        ({"subtasks": [{"kind": "harvest", "config": ["x"]}]}, "config must be an object"),
    ],
)
def test_invalid_task_payload_raises_configuration_error(overrides, match) -> None:
    with pytest.raises(ConfigurationError, match=match):
        TaskInfo.from_payload(_payload(**overrides))


def test_results_as_dict_flattens_outcomes_artifacts_and_status() -> None:
    results = Results()
    results.append(
        ResultEntry(
            label="harvest",
            kind=ProviderKind.HARVEST,
            succeeded=True,
            artifacts={"harvest_path": "/v/harvest.json"},
        ),
    )
    results.append(
        ResultEntry(
            label="transform",
            kind=ProviderKind.TRANSFORM,
            succeeded=False,
            message="bad data",
            error_code="data_format",
        ),
    )
    results.finalize(TaskStatus.PARTIAL)

    assert results.as_dict() == {
        "harvest": "success",
        "harvest_path": "/v/harvest.json",
        "transform": "failure",
        "status": "partial",
    }
    assert Results.from_payload(results.to_payload()) == results


def test_results_are_append_only_and_finalized_once() -> None:
    results = Results()
    entry = ResultEntry(label="cleanup", kind=ProviderKind.CLEANUP, succeeded=True)
    results.append(entry)

    with pytest.raises(RuntimeError, match="already contain"):
        results.append(entry)
    with pytest.raises(ValueError, match="non-terminal"):
        results.finalize(TaskStatus.RUNNING)

    results.finalize(TaskStatus.SUCCESS)
    with pytest.raises(RuntimeError, match="finalized"):
        results.finalize(TaskStatus.SUCCESS)
    with pytest.raises(RuntimeError, match="finalized"):
        results.append(ResultEntry(label="x", kind=ProviderKind.CLEANUP, succeeded=True))
