"""SQLModel-backed task registry."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from vocab_toolkit.storage.alembic_runner import upgrade_head
from vocab_toolkit.storage.common import (
    build_sqlite_engine,
    to_utc_aware_datetime,
    utc_now,
)
from vocab_toolkit.storage.sqlmodel_models import Task, VersionArtefact, VocabularyVersion
from vocab_toolkit.tasks.errors import ConcurrencyConflictError, PersistenceError
from vocab_toolkit.tasks.models import (
    ProviderKind,
    Results,
    TaskInfo,
    TaskStatus,
    TaskView,
    VersionArtefactView,
    VersionStatus,
)
from vocab_toolkit.tasks.results import aggregate_status

logger = logging.getLogger(__name__)
DEFAULT_ACTIVE_RUN_STALE_AFTER = timedelta(minutes=30)


class TaskStore(Protocol):
    """Persistence operations consumed by the task service."""

    def create_task(self, task_info: TaskInfo) -> int:
        """Record an accepted run and return its task id."""
        raise NotImplementedError

    def complete_task(self, task_id: int, results: Results) -> None:
        """Record the finalized results of a run."""
        raise NotImplementedError

    def get_task(self, task_id: int) -> TaskView | None:
        raise NotImplementedError

    def get_all_tasks(self) -> list[TaskView]:
        raise NotImplementedError

    def touch_task(self, task_id: int, results: Results | None = None) -> None:
        """Refresh the heartbeat and store the outcomes recorded so far."""
        raise NotImplementedError

    def recover_stale_tasks(self, *, stale_after: timedelta) -> list[int]:
        raise NotImplementedError


class ArtefactStore(Protocol):
    """Registry writes performed by the import provider."""

    def upsert_artefact(
        self,
        *,
        vocabulary_id: str,
        version_id: str,
        kind: str,
        path: str,
    ) -> None:
        raise NotImplementedError


class TaskRepository:
    """Task, version and artefact persistence backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        stale_after: timedelta = DEFAULT_ACTIVE_RUN_STALE_AFTER,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        if stale_after.total_seconds() <= 0:
            raise ValueError("stale_after must be > 0")
        self.db_path = db_path
        self.stale_after = stale_after
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def create_task(self, task_info: TaskInfo) -> int:
        params = json.dumps(task_info.to_payload(), ensure_ascii=False)
        vocabulary_id, version_id = task_info.version_key

        while True:
            with self._session() as session:
                now = utc_now()
                row = Task(
                    vocabulary_id=vocabulary_id,
                    version_id=version_id,
                    status=TaskStatus.RUNNING.value,
                    params=params,
                    created_at=now,
                    heartbeat_at=now,
                )
                session.add(row)
                try:
                    session.flush()
                except IntegrityError as error:
                    session.rollback()
                    active = self._running_task(session, vocabulary_id, version_id)
                    if active is None:
                        raise PersistenceError(
                            message=f"Could not record task: {error}",
                        ) from error
                    if self._is_stale(active):
                        self._close_stale(session, active)
                        session.commit()
                        logger.warning(
                            "Recovered stale running task and starting a new one "
                            "(vocabulary=%s version=%s stale_task_id=%s).",
                            vocabulary_id,
                            version_id,
                            active.task_id,
                        )
                        continue
                    raise ConcurrencyConflictError(
                        message="A run is already active for this vocabulary version "
                        f"(vocabulary_id={vocabulary_id}, version_id={version_id}, "
                        f"task_id={active.task_id}).",
                        vocabulary_id=vocabulary_id,
                        version_id=version_id,
                        active_task_id=active.task_id,
                    ) from error

                self._write_version_status(
                    session,
                    vocabulary_id=vocabulary_id,
                    version_id=version_id,
                    status=VersionStatus.PROCESSING,
                )
                session.commit()
                if row.task_id is None:
                    raise PersistenceError(message="Task store did not assign a task id.")
                return row.task_id

    def complete_task(self, task_id: int, results: Results) -> None:
        if not results.finalized:
            raise ValueError("Only finalized results can be recorded.")
        with self._session(task_id=task_id, results=results) as session:
            row = session.get(Task, task_id)
            if row is None:
                raise PersistenceError(
                    message=f"Task not found: {task_id}",
                    task_id=task_id,
                    results=results,
                )
            if row.status != TaskStatus.RUNNING.value:
                raise PersistenceError(
                    message=f"Task {task_id} was already closed as {row.status}.",
                    task_id=task_id,
                    results=results,
                )
            now = utc_now()
            status = results.status or TaskStatus.ERROR
            row.status = status.value
            row.response = json.dumps(results.to_payload(), ensure_ascii=False)
            row.finished_at = now
            row.heartbeat_at = now
            row.error_summary = _error_summary(results)
            session.add(row)
            self._write_version_status(
                session,
                vocabulary_id=row.vocabulary_id,
                version_id=row.version_id,
                status=_version_status_for(results),
            )
            session.commit()

    def touch_task(self, task_id: int, results: Results | None = None) -> None:
        with self._session(task_id=task_id) as session:
            row = session.get(Task, task_id)
            if row is None or row.status != TaskStatus.RUNNING.value:
                return
            row.heartbeat_at = utc_now()
            if results is not None:
                # In-progress entries; recovery closes the run from this snapshot.
                row.response = json.dumps(results.to_payload(), ensure_ascii=False)
            session.add(row)
            session.commit()

    def get_task(self, task_id: int) -> TaskView | None:
        with self._session(task_id=task_id) as session:
            row = session.get(Task, task_id)
            return _task_view(row) if row is not None else None

    def get_all_tasks(self) -> list[TaskView]:
        with self._session() as session:
            rows = session.exec(select(Task).order_by(col(Task.task_id))).all()
            return [_task_view(row) for row in rows]

    def recover_stale_tasks(self, *, stale_after: timedelta | None = None) -> list[int]:
        """Mark running tasks whose heartbeat is too old as errored."""

        threshold = stale_after or self.stale_after
        recovered: list[int] = []
        with self._session() as session:
            rows = session.exec(
                select(Task).where(Task.status == TaskStatus.RUNNING.value),
            ).all()
            for row in rows:
                if not self._is_stale(row, stale_after=threshold):
                    continue
                self._close_stale(session, row)
                if row.task_id is not None:
                    recovered.append(row.task_id)
            session.commit()
        for task_id in recovered:
            logger.warning("Marked orphaned running task as error (task_id=%s).", task_id)
        return recovered

    def get_version_status(self, vocabulary_id: str, version_id: str) -> VersionStatus | None:
        with self._session() as session:
            row = session.get(VocabularyVersion, (vocabulary_id, version_id))
            return VersionStatus(row.status) if row is not None else None

    def upsert_artefact(
        self,
        *,
        vocabulary_id: str,
        version_id: str,
        kind: str,
        path: str,
    ) -> None:
        with self._session() as session:
            row = session.exec(
                select(VersionArtefact).where(
                    VersionArtefact.vocabulary_id == vocabulary_id,
                    VersionArtefact.version_id == version_id,
                    VersionArtefact.kind == kind,
                ),
            ).one_or_none()
            if row is None:
                row = VersionArtefact(
                    vocabulary_id=vocabulary_id,
                    version_id=version_id,
                    kind=kind,
                    path=path,
                    updated_at=utc_now(),
                )
            else:
                row.path = path
                row.updated_at = utc_now()
            session.add(row)
            session.commit()

    def list_artefacts(self, vocabulary_id: str, version_id: str) -> list[VersionArtefactView]:
        with self._session() as session:
            rows = session.exec(
                select(VersionArtefact)
                .where(
                    VersionArtefact.vocabulary_id == vocabulary_id,
                    VersionArtefact.version_id == version_id,
                )
                .order_by(col(VersionArtefact.kind)),
            ).all()
            return [
                VersionArtefactView(
                    vocabulary_id=row.vocabulary_id,
                    version_id=row.version_id,
                    kind=row.kind,
                    path=row.path,
                    updated_at=to_utc_aware_datetime(row.updated_at),
                )
                for row in rows
            ]

    @contextmanager
    def _session(
        self,
        *,
        task_id: int | None = None,
        results: Results | None = None,
    ) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as error:
            raise PersistenceError(
                message=f"Task store unavailable: {error}",
                task_id=task_id,
                results=results,
            ) from error

    def _running_task(self, session: Session, vocabulary_id: str, version_id: str) -> Task | None:
        return session.exec(
            select(Task).where(
                Task.vocabulary_id == vocabulary_id,
                Task.version_id == version_id,
                Task.status == TaskStatus.RUNNING.value,
            ),
        ).one_or_none()

    def _is_stale(self, row: Task, *, stale_after: timedelta | None = None) -> bool:
        heartbeat_at = row.heartbeat_at or row.created_at
        return (utc_now() - to_utc_aware_datetime(heartbeat_at)) > (stale_after or self.stale_after)

    def _close_stale(self, session: Session, row: Task) -> None:
        stored = Results.from_payload(json.loads(row.response)) if row.response else Results()
        recovered = Results(entries=list(stored.entries))
        recovered.finalize(
            aggregate_status((entry.succeeded for entry in recovered.entries), aborted=True),
        )
        now = utc_now()
        row.status = TaskStatus.ERROR.value
        row.response = json.dumps(recovered.to_payload(), ensure_ascii=False)
        row.finished_at = now
        row.heartbeat_at = now
        row.error_summary = "Auto-recovered stale running task after crash/interruption."
        session.add(row)
        self._write_version_status(
            session,
            vocabulary_id=row.vocabulary_id,
            version_id=row.version_id,
            status=VersionStatus.ERROR,
        )

    def _write_version_status(
        self,
        session: Session,
        *,
        vocabulary_id: str,
        version_id: str,
        status: VersionStatus,
    ) -> None:
        row = session.get(VocabularyVersion, (vocabulary_id, version_id))
        if row is None:
            row = VocabularyVersion(
                vocabulary_id=vocabulary_id,
                version_id=version_id,
                status=status.value,
                updated_at=utc_now(),
            )
        else:
            row.status = status.value
            row.updated_at = utc_now()
        session.add(row)


def _task_view(row: Task) -> TaskView:
    if row.task_id is None:
        raise RuntimeError("Persisted task row has no task_id.")
    return TaskView(
        task_id=row.task_id,
        vocabulary_id=row.vocabulary_id,
        version_id=row.version_id,
        status=TaskStatus(row.status),
        task_info=TaskInfo.from_payload(json.loads(row.params)),
        results=Results.from_payload(json.loads(row.response)) if row.response else None,
        created_at=to_utc_aware_datetime(row.created_at),
        heartbeat_at=(
            to_utc_aware_datetime(row.heartbeat_at) if row.heartbeat_at is not None else None
        ),
        finished_at=(
            to_utc_aware_datetime(row.finished_at) if row.finished_at is not None else None
        ),
        error_summary=row.error_summary,
    )


def _error_summary(results: Results) -> str | None:
    failed = [entry for entry in results.entries if not entry.succeeded]
    if not failed:
        return None
    return "; ".join(f"{entry.label}: {entry.message}" for entry in failed)


def _version_status_for(results: Results) -> VersionStatus:
    if results.status is TaskStatus.ERROR:
        return VersionStatus.ERROR
    imported = any(
        entry.succeeded and entry.kind is ProviderKind.IMPORT for entry in results.entries
    )
    return VersionStatus.PUBLISHED if imported else VersionStatus.DRAFT
