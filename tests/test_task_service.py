from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path

import allure
import pytest
from conftest import StubProvider, age_heartbeat, stub_providers

from vocab_toolkit.storage.repository import TaskRepository
from vocab_toolkit.tasks.errors import (
    ConcurrencyConflictError,
    ConfigurationError,
    PersistenceError,
)
from vocab_toolkit.tasks.models import (
    ProviderKind,
    Results,
    StepOutcome,
    SubtaskSpec,
    TaskInfo,
    TaskStatus,
    VersionStatus,
)
from vocab_toolkit.tasks.service import TaskService

pytestmark = [
    allure.epic("Task Pipeline"),
    allure.feature("Task Service"),
]


def _task(version_id: str = "v1") -> TaskInfo:
    return TaskInfo(
        vocabulary_id="fauna",
        version_id=version_id,
        subtasks=(
            SubtaskSpec(kind=ProviderKind.HARVEST),
            SubtaskSpec(kind=ProviderKind.IMPORT),
            SubtaskSpec(kind=ProviderKind.CLEANUP),
        ),
    )


class _BlockingStep(StubProvider):
    def __init__(self, kind: ProviderKind = ProviderKind.HARVEST) -> None:
        super().__init__(kind, action=self._block)
        self.started = threading.Event()
        self.release = threading.Event()

    def _block(self, _config, _context) -> StepOutcome:
        self.started.set()
        assert self.release.wait(timeout=10)
        return StepOutcome.success(f"{self.kind.value.lower()} done")


class _FailingCompleteStore(TaskRepository):
    def complete_task(self, task_id: int, results: Results) -> None:
        raise PersistenceError(message="disk full")


def _service(repository: TaskRepository, tmp_path: Path, **providers: StubProvider) -> TaskService:
    return TaskService(
        store=repository,
        providers=stub_providers(**providers),
        vocabs_root=tmp_path / "vocabs",
    )


def test_submit_task_runs_and_records_results(repository: TaskRepository, tmp_path: Path) -> None:
    service = _service(repository, tmp_path)

    task_id = service.submit_task(_task())

    results = service.get_results(task_id)
    assert results is not None
    assert results.as_dict() == {
        "harvest": "success",
        "import": "success",
        "cleanup": "success",
        "status": "success",
    }
    assert repository.get_task(task_id).status is TaskStatus.SUCCESS  # type: ignore[union-attr]
    assert repository.get_version_status("fauna", "v1") is VersionStatus.PUBLISHED
    assert service.get_results(12345) is None


def test_concurrent_submission_for_same_version_is_rejected(
    repository: TaskRepository,
    tmp_path: Path,
) -> None:
    harvest = _BlockingStep()
    service = _service(repository, tmp_path, harvest=harvest)

    first_id = service.submit_task(_task(), wait=False)
    assert harvest.started.wait(timeout=10)
    assert service.get_results(first_id) is None

    with pytest.raises(ConcurrencyConflictError):
        service.submit_task(_task())

    other_id = service.submit_task(_task(version_id="v2"), wait=False)

    harvest.release.set()
    first = service.wait(first_id, timeout=10)
    other = service.wait(other_id, timeout=10)
    assert first is not None and first.status is TaskStatus.SUCCESS
    assert other is not None and other.status is TaskStatus.SUCCESS
    assert len(repository.get_all_tasks()) == 2


def test_conflict_from_store_releases_in_process_guard(
    repository: TaskRepository,
    tmp_path: Path,
) -> None:
    repository.create_task(_task())
    service = _service(repository, tmp_path)

    with pytest.raises(ConcurrencyConflictError):
        service.submit_task(_task())
    assert not service.guard.is_active("fauna", "v1")


def test_unrecorded_results_stay_available(tmp_path: Path) -> None:
    store = _FailingCompleteStore(tmp_path / "tasks.db")
    store.init_schema()
    service = _service(store, tmp_path)

    with pytest.raises(PersistenceError) as excinfo:
        service.submit_task(_task())

    error = excinfo.value
    assert error.task_id is not None
    assert error.results is not None
    assert error.results.status is TaskStatus.SUCCESS
    assert service.get_results(error.task_id) is error.results
    assert not service.guard.is_active("fauna", "v1")
    store.close()


def test_background_persistence_failure_surfaces_on_wait(tmp_path: Path) -> None:
    store = _FailingCompleteStore(tmp_path / "tasks.db")
    store.init_schema()
    service = _service(store, tmp_path)

    task_id = service.submit_task(_task(), wait=False)

    with pytest.raises(PersistenceError):
        service.wait(task_id, timeout=10)
    assert service.get_results(task_id) is not None
    store.close()


def test_missing_provider_fails_before_task_is_recorded(
    repository: TaskRepository,
    tmp_path: Path,
) -> None:
    providers = stub_providers()
    del providers[ProviderKind.CLEANUP]
    service = TaskService(store=repository, providers=providers, vocabs_root=tmp_path)

    with pytest.raises(ConfigurationError):
        service.submit_task(_task())
    assert repository.get_all_tasks() == []


def test_rerun_submits_stored_description_as_new_task(
    repository: TaskRepository,
    tmp_path: Path,
) -> None:
    harvest = StubProvider(
        ProviderKind.HARVEST,
        [
            StepOutcome.failure("down", code="source_unavailable"),
            StepOutcome.success("ok", harvest_path="/v/raw.json"),
        ],
    )
    service = _service(repository, tmp_path, harvest=harvest)

    first_id = service.submit_task(_task())
    assert service.get_results(first_id).status is TaskStatus.ERROR  # type: ignore[union-attr]

    second_id = service.rerun(first_id)

    assert second_id != first_id
    assert service.get_results(second_id).status is TaskStatus.SUCCESS  # type: ignore[union-attr]
    assert repository.get_task(second_id).task_info == _task()  # type: ignore[union-attr]
    with pytest.raises(ConfigurationError, match="not found"):
        service.rerun(999)


def test_recover_closes_orphaned_running_tasks(tmp_path: Path) -> None:
    repository = TaskRepository(tmp_path / "tasks.db")
    repository.init_schema()
    orphan_id = repository.create_task(_task())
    age_heartbeat(repository, orphan_id)
    service = TaskService(
        store=repository,
        providers=stub_providers(),
        vocabs_root=tmp_path,
        stale_after=timedelta(minutes=1),
    )

    assert service.recover() == [orphan_id]
    assert service.recover() == []
    assert service.get_results(orphan_id).status is TaskStatus.ERROR  # type: ignore[union-attr]
    repository.close()


def test_run_closed_by_recovery_is_not_overwritten(
    repository: TaskRepository,
    tmp_path: Path,
) -> None:
    cleanup = _BlockingStep(ProviderKind.CLEANUP)
    service = _service(repository, tmp_path, cleanup=cleanup)
    task_id = service.submit_task(_task(), wait=False)
    assert cleanup.started.wait(timeout=10)

    age_heartbeat(repository, task_id)
    assert service.recover() == [task_id]
    recovered = repository.get_task(task_id)
    assert recovered is not None and recovered.results is not None
    assert recovered.results.labels() == ["harvest", "import"]
    assert recovered.results.status is TaskStatus.ERROR

    cleanup.release.set()
    with pytest.raises(PersistenceError) as excinfo:
        service.wait(task_id, timeout=10)

    assert excinfo.value.task_id == task_id
    assert repository.get_task(task_id).status is TaskStatus.ERROR  # type: ignore[union-attr]
    unrecorded = service.get_results(task_id)
    assert unrecorded is not None and unrecorded.status is TaskStatus.SUCCESS
