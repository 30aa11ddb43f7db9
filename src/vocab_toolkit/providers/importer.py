"""Import provider: publish canonical concepts to the registry and search index."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from vocab_toolkit.http.solr import IndexSink, SolrIndexSink
from vocab_toolkit.http.sparql import parse_bindings
from vocab_toolkit.providers.base import BaseProvider, optional_float, optional_str, read_json
from vocab_toolkit.providers.harvest import HARVEST_PATH
from vocab_toolkit.providers.subjects import RESOLVED_SUBJECTS
from vocab_toolkit.providers.transform import (
    CONCEPTS_LIST,
    CONCEPTS_TREE,
    build_list,
    collect_concepts,
)
from vocab_toolkit.storage.repository import ArtefactStore
from vocab_toolkit.tasks.context import RunContext
from vocab_toolkit.tasks.errors import (
    DataFormatError,
    PersistenceError,
    SourceUnavailableError,
    StepConfigurationError,
)
from vocab_toolkit.tasks.models import ProviderKind, StepOutcome

logger = logging.getLogger(__name__)

IMPORT_SUMMARY = "import_summary"
REGISTRY_TARGET = "registry"
INDEX_TARGET = "index"
REGISTERED_ARTIFACTS = (HARVEST_PATH, CONCEPTS_TREE, CONCEPTS_LIST, RESOLVED_SUBJECTS)


def solr_sink_from_config(config: Mapping[str, Any]) -> SolrIndexSink:
    solr_url = optional_str(config, "solr_url")
    if not solr_url:
        raise StepConfigurationError(message="Config key 'solr_url' is required for index import.")
    return SolrIndexSink(
        base_url=solr_url,
        collection=optional_str(config, "collection", "concepts") or "concepts",
        timeout_seconds=optional_float(config, "timeout_seconds", 30.0),
    )


class ImportProvider(BaseProvider):
    """Registers version artefacts and pushes concept documents into the index."""

    kind = ProviderKind.IMPORT

    def __init__(
        self,
        *,
        artefact_store: ArtefactStore | None = None,
        index_sink: IndexSink | None = None,
    ) -> None:
        self.artefact_store = artefact_store
        self.index_sink = index_sink

    def run(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        targets = _targets(config)
        concepts_path = context.get(CONCEPTS_LIST) or context.get(CONCEPTS_TREE)
        harvest_path = context.get(HARVEST_PATH)
        if concepts_path is None and harvest_path is None:
            raise StepConfigurationError(
                message="Import requires a harvested or transformed concepts artifact.",
                code="missing_artifact",
            )

        summary: list[str] = []
        if REGISTRY_TARGET in targets:
            summary.append(f"registry={self._register(context)}")
        if INDEX_TARGET in targets:
            if concepts_path is not None:
                items = _load_concepts(Path(concepts_path))
            else:
                # Untransformed versions are indexed straight from the harvested bindings.
                bindings = parse_bindings(Path(harvest_path).read_bytes())
                items = build_list(collect_concepts(bindings))
            documents = list(_documents(items, context))
            published = self._publish(documents, config, context)
            summary.append(f"index={published}")

        line = " ".join(summary)
        return StepOutcome.success(f"Imported {line}.", **{IMPORT_SUMMARY: line})

    def _register(self, context: RunContext) -> int:
        if self.artefact_store is None:
            raise StepConfigurationError(message="No registry store configured for import.")
        count = 0
        for key in REGISTERED_ARTIFACTS:
            path = context.get(key)
            if path is None:
                continue
            try:
                self.artefact_store.upsert_artefact(
                    vocabulary_id=context.vocabulary_id,
                    version_id=context.version_id,
                    kind=key,
                    path=path,
                )
            except PersistenceError as error:
                raise SourceUnavailableError(
                    message=f"Registry store unavailable: {error.message}",
                ) from error
            count += 1
        return count

    def _publish(
        self,
        documents: Sequence[dict[str, Any]],
        config: Mapping[str, Any],
        context: RunContext,
    ) -> int:
        if self.index_sink is not None:
            return self.index_sink.publish(
                vocabulary_id=context.vocabulary_id,
                version_id=context.version_id,
                documents=documents,
            )
        with solr_sink_from_config(config) as sink:
            return sink.publish(
                vocabulary_id=context.vocabulary_id,
                version_id=context.version_id,
                documents=documents,
            )


def _targets(config: Mapping[str, Any]) -> set[str]:
    raw = config.get("targets", [REGISTRY_TARGET, INDEX_TARGET])
    if isinstance(raw, str):
        raw = [part.strip() for part in raw.split(",") if part.strip()]
    if not isinstance(raw, list) or not raw:
        raise StepConfigurationError(message=f"Config key 'targets' is invalid: {raw!r}")
    targets = {str(item).lower() for item in raw}
    unknown = targets - {REGISTRY_TARGET, INDEX_TARGET}
    if unknown:
        raise StepConfigurationError(message=f"Unknown import targets: {sorted(unknown)}")
    return targets


def _load_concepts(path: Path) -> list[Any]:
    try:
        payload = read_json(path)
    except json.JSONDecodeError as exc:
        raise DataFormatError(message=f"Concepts file {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise DataFormatError(message=f"Concepts file {path} must contain a JSON list.")
    return payload


def _documents(items: list[Any], context: RunContext) -> Iterator[dict[str, Any]]:
    for item in _flatten(items):
        iri = item.get("iri")
        if not isinstance(iri, str) or not iri:
            raise DataFormatError(message=f"Concept without IRI: {item!r}")
        document = {
            "id": f"{context.vocabulary_id}/{context.version_id}/{iri}",
            "vocabulary_id": context.vocabulary_id,
            "version_id": context.version_id,
            "iri": iri,
            "prefLabel": item.get("prefLabel"),
        }
        for optional in ("notation", "definition"):
            if item.get(optional) is not None:
                document[optional] = item[optional]
        yield document


def _flatten(nodes: list[Any]) -> Iterator[dict[str, Any]]:
    seen: set[str] = set()
    stack = list(reversed(nodes))
    while stack:
        node = stack.pop()
        if not isinstance(node, dict):
            raise DataFormatError(message=f"Invalid concept entry: {node!r}")
        iri = node.get("iri")
        if isinstance(iri, str) and iri in seen:
            continue
        if isinstance(iri, str):
            seen.add(iri)
        yield node
        stack.extend(reversed(node.get("narrower") or []))
