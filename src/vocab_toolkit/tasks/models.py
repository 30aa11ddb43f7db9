"""Domain models for vocabulary processing tasks."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from vocab_toolkit.tasks.errors import ConfigurationError

STATUS_KEY = "status"
_IDENTIFIER_RE = re.compile(r"[A-Za-z0-9._-]+")


class ProviderKind(str, Enum):
    """Closed set of processing step kinds."""

    HARVEST = "HARVEST"
    TRANSFORM = "TRANSFORM"
    IMPORT = "IMPORT"
    SUBJECT_RESOLVE = "SUBJECT_RESOLVE"
    CLEANUP = "CLEANUP"


CRITICAL_BY_DEFAULT: frozenset[ProviderKind] = frozenset(
    {ProviderKind.HARVEST, ProviderKind.IMPORT},
)


class TaskStatus(str, Enum):
    """Terminal run status, plus RUNNING for persisted in-flight tasks."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class RunState(str, Enum):
    """TaskRunner lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED_SUCCESS = "completed_success"
    COMPLETED_PARTIAL = "completed_partial"
    ABORTED = "aborted"


class VersionStatus(str, Enum):
    """Registry lifecycle status of a vocabulary version."""

    DRAFT = "draft"
    PROCESSING = "processing"
    PUBLISHED = "published"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class SubtaskSpec:
    """One configured provider invocation inside a task."""

    kind: ProviderKind
    config: Mapping[str, Any] = field(default_factory=dict)
    label: str = ""
    critical: bool | None = None
    max_attempts: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))
        if self.critical is None:
            object.__setattr__(self, "critical", self.kind in CRITICAL_BY_DEFAULT)
        if self.max_attempts < 1:
            raise ConfigurationError(
                message=f"max_attempts must be >= 1 for {self.kind.value} subtask.",
            )

    @property
    def is_cleanup(self) -> bool:
        return self.kind is ProviderKind.CLEANUP

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "label": self.label,
            "critical": self.critical,
            "max_attempts": self.max_attempts,
            "config": dict(self.config),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> SubtaskSpec:
        if not isinstance(payload, Mapping):
            raise ConfigurationError(message=f"Subtask must be an object, got {payload!r}.")
        raw_kind = payload.get("kind")
        try:
            kind = ProviderKind(str(raw_kind).upper())
        except ValueError as error:
            raise ConfigurationError(message=f"Unknown subtask kind: {raw_kind!r}.") from error

        config = payload.get("config") or {}
        if not isinstance(config, Mapping):
            raise ConfigurationError(
                message=f"Subtask config must be an object for {kind.value}, got {config!r}.",
            )
        critical = payload.get("critical")
        if critical is not None and not isinstance(critical, bool):
            raise ConfigurationError(
                message=f"Subtask 'critical' must be a boolean, got {critical!r}.",
            )
        max_attempts = payload.get("max_attempts", 1)
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int):
            raise ConfigurationError(
                message=f"Subtask 'max_attempts' must be an integer, got {max_attempts!r}.",
            )
        label = payload.get("label") or ""
        if not isinstance(label, str):
            raise ConfigurationError(message=f"Subtask 'label' must be a string, got {label!r}.")
        return cls(
            kind=kind,
            config=config,
            label=label.strip(),
            critical=critical,
            max_attempts=max_attempts,
        )


@dataclass(frozen=True, slots=True)
class TaskInfo:
    """Immutable description of one execution request for a vocabulary version."""

    vocabulary_id: str
    version_id: str
    subtasks: tuple[SubtaskSpec, ...]

    def __post_init__(self) -> None:
        _validate_identifier(self.vocabulary_id, name="vocabulary_id")
        _validate_identifier(self.version_id, name="version_id")
        if not self.subtasks:
            raise ConfigurationError(message="Task must contain at least one subtask.")
        object.__setattr__(self, "subtasks", _assign_labels(tuple(self.subtasks)))

    @property
    def version_key(self) -> tuple[str, str]:
        return (self.vocabulary_id, self.version_id)

    def with_subtasks(self, subtasks: tuple[SubtaskSpec, ...]) -> TaskInfo:
        return TaskInfo(
            vocabulary_id=self.vocabulary_id,
            version_id=self.version_id,
            subtasks=subtasks,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "vocabulary_id": self.vocabulary_id,
            "version_id": self.version_id,
            "subtasks": [subtask.to_payload() for subtask in self.subtasks],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TaskInfo:
        """Build a TaskInfo from its JSON form, raising ConfigurationError on bad input."""

        if not isinstance(payload, Mapping):
            raise ConfigurationError(message="Task description must be a JSON object.")
        subtasks = payload.get("subtasks")
        if not isinstance(subtasks, list):
            raise ConfigurationError(message="Task 'subtasks' must be a list.")
        return cls(
            vocabulary_id=str(payload.get("vocabulary_id") or "").strip(),
            version_id=str(payload.get("version_id") or "").strip(),
            subtasks=tuple(SubtaskSpec.from_payload(item) for item in subtasks),
        )


def _validate_identifier(value: str, *, name: str) -> None:
    # Identifiers become directory names under the vocabs root.
    if not value or not _IDENTIFIER_RE.fullmatch(value) or value in {".", ".."}:
        raise ConfigurationError(
            message=f"{name} must be a non-empty string of letters, digits, '.', '_' or '-', "
            f"got {value!r}.",
        )


def _assign_labels(subtasks: tuple[SubtaskSpec, ...]) -> tuple[SubtaskSpec, ...]:
    explicit = [subtask.label for subtask in subtasks if subtask.label]
    seen: set[str] = set()
    for label in explicit:
        if label == STATUS_KEY:
            raise ConfigurationError(message=f"Subtask label {STATUS_KEY!r} is reserved.")
        if label in seen:
            raise ConfigurationError(message=f"Duplicate subtask label: {label!r}.")
        seen.add(label)

    labelled: list[SubtaskSpec] = []
    for subtask in subtasks:
        if subtask.label:
            labelled.append(subtask)
            continue
        base = subtask.kind.value.lower()
        label = base
        suffix = 1
        while label in seen:
            suffix += 1
            label = f"{base}_{suffix}"
        seen.add(label)
        labelled.append(
            SubtaskSpec(
                kind=subtask.kind,
                config=subtask.config,
                label=label,
                critical=subtask.critical,
                max_attempts=subtask.max_attempts,
            ),
        )
    return tuple(labelled)


@dataclass(slots=True)
class StepOutcome:
    """Outcome of one provider invocation."""

    succeeded: bool
    message: str = ""
    artifacts: dict[str, str] = field(default_factory=dict)
    error_code: str | None = None
    retryable: bool = False

    @classmethod
    def success(cls, message: str = "", **artifacts: str) -> StepOutcome:
        return cls(succeeded=True, message=message, artifacts=dict(artifacts))

    @classmethod
    def failure(cls, message: str, *, code: str, retryable: bool = False) -> StepOutcome:
        return cls(succeeded=False, message=message, error_code=code, retryable=retryable)


@dataclass(frozen=True, slots=True)
class ResultEntry:
    """Recorded outcome of one executed subtask."""

    label: str
    kind: ProviderKind
    succeeded: bool
    message: str = ""
    artifacts: Mapping[str, str] = field(default_factory=dict)
    error_code: str | None = None
    attempts: int = 1

    @property
    def outcome(self) -> str:
        return "success" if self.succeeded else "failure"

    def to_payload(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "kind": self.kind.value,
            "succeeded": self.succeeded,
            "message": self.message,
            "artifacts": dict(self.artifacts),
            "error_code": self.error_code,
            "attempts": self.attempts,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ResultEntry:
        return cls(
            label=str(payload["label"]),
            kind=ProviderKind(payload["kind"]),
            succeeded=bool(payload["succeeded"]),
            message=str(payload.get("message") or ""),
            artifacts=dict(payload.get("artifacts") or {}),
            error_code=payload.get("error_code"),
            attempts=int(payload.get("attempts") or 1),
        )


@dataclass(slots=True)
class Results:
    """Ordered, append-only record of a run's subtask outcomes."""

    entries: list[ResultEntry] = field(default_factory=list)
    status: TaskStatus | None = None

    @property
    def finalized(self) -> bool:
        return self.status is not None

    def append(self, entry: ResultEntry) -> None:
        if self.finalized:
            raise RuntimeError("Results already finalized; entries cannot be appended.")
        if any(existing.label == entry.label for existing in self.entries):
            raise RuntimeError(f"Results already contain an entry for {entry.label!r}.")
        self.entries.append(entry)

    def finalize(self, status: TaskStatus) -> None:
        if self.finalized:
            raise RuntimeError("Results already finalized.")
        if status is TaskStatus.RUNNING:
            raise ValueError("Results cannot be finalized with a non-terminal status.")
        self.status = status

    def entry(self, label: str) -> ResultEntry | None:
        for entry in self.entries:
            if entry.label == label:
                return entry
        return None

    def labels(self) -> list[str]:
        return [entry.label for entry in self.entries]

    def artifact(self, key: str) -> str | None:
        value: str | None = None
        for entry in self.entries:
            if entry.succeeded and key in entry.artifacts:
                value = entry.artifacts[key]
        return value

    def as_dict(self) -> dict[str, str]:
        """Flat label/artifact/status view in entry order."""

        flat: dict[str, str] = {}
        for entry in self.entries:
            flat[entry.label] = entry.outcome
            if entry.succeeded:
                flat.update(entry.artifacts)
        if self.status is not None:
            flat[STATUS_KEY] = self.status.value
        return flat

    def to_payload(self) -> dict[str, Any]:
        return {
            "entries": [entry.to_payload() for entry in self.entries],
            STATUS_KEY: self.status.value if self.status is not None else None,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Results:
        raw_status = payload.get(STATUS_KEY)
        return cls(
            entries=[ResultEntry.from_payload(item) for item in payload.get("entries") or []],
            status=TaskStatus(raw_status) if raw_status else None,
        )


@dataclass(slots=True)
class TaskView:
    """Persisted task record."""

    task_id: int
    vocabulary_id: str
    version_id: str
    status: TaskStatus
    task_info: TaskInfo
    results: Results | None
    created_at: datetime
    heartbeat_at: datetime | None
    finished_at: datetime | None
    error_summary: str | None = None


@dataclass(slots=True)
class VersionArtefactView:
    """Registry artefact row for a vocabulary version."""

    vocabulary_id: str
    version_id: str
    kind: str
    path: str
    updated_at: datetime
