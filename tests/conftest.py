"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import text

from vocab_toolkit.storage.repository import TaskRepository
from vocab_toolkit.tasks.context import RunContext
from vocab_toolkit.tasks.models import ProviderKind, StepOutcome

CONCEPT_BINDINGS: list[dict[str, Any]] = [
    {
        "concept": {"type": "uri", "value": "http://example.org/c/animals"},
        "prefLabel": {"type": "literal", "value": "Animals", "xml:lang": "en"},
        "notation": {"type": "literal", "value": "A"},
    },
    {
        "concept": {"type": "uri", "value": "http://example.org/c/cats"},
        "prefLabel": {"type": "literal", "value": "Cats", "xml:lang": "en"},
        "broader": {"type": "uri", "value": "http://example.org/c/animals"},
        "definition": {"type": "literal", "value": "Small felines."},
    },
    {
        "concept": {"type": "uri", "value": "http://example.org/c/birds"},
        "prefLabel": {"type": "literal", "value": "Birds", "xml:lang": "en"},
        "broader": {"type": "uri", "value": "http://example.org/c/animals"},
    },
    {
        "concept": {"type": "uri", "value": "http://example.org/c/plants"},
        "prefLabel": {"type": "literal", "value": "Plants", "xml:lang": "en"},
    },
]


def sparql_document(bindings: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return {
        "head": {"vars": ["concept", "prefLabel", "broader", "notation", "definition"]},
        "results": {"bindings": CONCEPT_BINDINGS if bindings is None else bindings},
    }


class StubProvider:
    """Provider returning scripted outcomes and recording every call."""

    def __init__(
        self,
        kind: ProviderKind,
        outcomes: list[StepOutcome] | None = None,
        *,
        action: Callable[[Mapping[str, Any], RunContext], StepOutcome] | None = None,
    ) -> None:
        self.kind = kind
        self._outcomes = list(outcomes or [])
        self._action = action
        self.calls: list[dict[str, Any]] = []
        self.seen_artifacts: list[dict[str, str]] = []

    def execute(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        self.calls.append(dict(config))
        self.seen_artifacts.append(dict(context.artifacts))
        if self._action is not None:
            return self._action(config, context)
        if len(self._outcomes) > 1:
            return self._outcomes.pop(0)
        if self._outcomes:
            return self._outcomes[0]
        return StepOutcome.success(f"{self.kind.value} done")


def stub_providers(**overrides: StubProvider) -> dict[ProviderKind, StubProvider]:
    providers = {kind: StubProvider(kind) for kind in ProviderKind}
    for provider in overrides.values():
        providers[provider.kind] = provider
    return providers


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[TaskRepository]:
    repo = TaskRepository(tmp_path / "tasks.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def harvest_file(tmp_path: Path) -> Path:
    path = tmp_path / "upload" / "concepts.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(sparql_document()), encoding="utf-8")
    return path


def age_heartbeat(repository: TaskRepository, task_id: int) -> None:
    with repository.engine.begin() as connection:
        connection.execute(
            text("UPDATE tasks SET heartbeat_at = :stale WHERE task_id = :task_id"),
            {"stale": "2000-01-01 00:00:00.000000", "task_id": task_id},
        )
