"""Transform provider: build canonical concept representations from harvested bindings."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vocab_toolkit.http.sparql import binding_value, parse_bindings
from vocab_toolkit.providers.base import BaseProvider, optional_str, write_json
from vocab_toolkit.providers.harvest import HARVEST_PATH
from vocab_toolkit.tasks.context import RunContext
from vocab_toolkit.tasks.errors import DataFormatError, StepConfigurationError
from vocab_toolkit.tasks.models import ProviderKind, StepOutcome

logger = logging.getLogger(__name__)

CONCEPTS_TREE = "concepts_tree"
CONCEPTS_LIST = "concepts_list"
_OUTPUTS = {"json_tree": CONCEPTS_TREE, "json_list": CONCEPTS_LIST}


@dataclass(slots=True)
class Concept:
    """Concept assembled from one or more SPARQL binding rows."""

    iri: str
    pref_label: str
    notation: str | None = None
    definition: str | None = None
    broader: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"iri": self.iri, "prefLabel": self.pref_label}
        if self.notation is not None:
            payload["notation"] = self.notation
        if self.definition is not None:
            payload["definition"] = self.definition
        return payload


def collect_concepts(bindings: Iterable[dict[str, Any]]) -> dict[str, Concept]:
    """Merge binding rows into concepts keyed by IRI; the first label seen wins."""

    concepts: dict[str, Concept] = {}
    for binding in bindings:
        iri = binding_value(binding, "concept")
        label = binding_value(binding, "prefLabel")
        if not iri or label is None:
            raise DataFormatError(
                message=f"Binding lacks required 'concept'/'prefLabel' values: {binding!r}",
            )
        concept = concepts.get(iri)
        if concept is None:
            concept = Concept(iri=iri, pref_label=label)
            concepts[iri] = concept
        notation = binding_value(binding, "notation")
        if concept.notation is None and notation:
            concept.notation = notation
        definition = binding_value(binding, "definition")
        if concept.definition is None and definition:
            concept.definition = definition
        broader = binding_value(binding, "broader")
        if broader and broader != iri and broader not in concept.broader:
            concept.broader.append(broader)
    return concepts


def build_tree(concepts: Mapping[str, Concept]) -> list[dict[str, Any]]:
    """Nest concepts under their broader concepts.

    Roots are concepts without a known broader concept. Each concept is
    nested once, under the first of its broader concepts reached in label
    order; a concept with several known broader concepts lists all of their
    IRIs under ``broader``. Cycles are cut at the first revisited concept;
    concepts reachable only through a cycle are promoted to roots.
    """

    narrower: dict[str, list[str]] = {iri: [] for iri in concepts}
    for concept in concepts.values():
        for parent in concept.broader:
            if parent in narrower:
                narrower[parent].append(concept.iri)

    def sort_key(iri: str) -> tuple[str, str]:
        return (concepts[iri].pref_label.casefold(), iri)

    for children in narrower.values():
        children.sort(key=sort_key)

    tree: list[dict[str, Any]] = []
    placed: set[str] = set()

    def place(root: str) -> None:
        stack: list[tuple[str, list[dict[str, Any]]]] = [(root, tree)]
        while stack:
            iri, siblings = stack.pop()
            if iri in placed:
                continue
            placed.add(iri)
            concept = concepts[iri]
            payload = concept.to_payload()
            known_broader = [parent for parent in concept.broader if parent in concepts]
            if len(known_broader) > 1:
                payload["broader"] = sorted(known_broader)
            siblings.append(payload)
            children = [child for child in narrower[iri] if child not in placed]
            if children:
                payload["narrower"] = []
                stack.extend((child, payload["narrower"]) for child in reversed(children))

    roots = [
        iri
        for iri, concept in concepts.items()
        if not any(parent in concepts for parent in concept.broader)
    ]
    for iri in sorted(roots, key=sort_key):
        place(iri)
    for iri in sorted(concepts, key=sort_key):
        if iri not in placed:
            place(iri)
    return tree


def build_list(concepts: Mapping[str, Concept]) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for concept in sorted(concepts.values(), key=lambda c: (c.pref_label.casefold(), c.iri)):
        payload = concept.to_payload()
        known_broader = [parent for parent in concept.broader if parent in concepts]
        if known_broader:
            payload["broader"] = sorted(known_broader)
        items.append(payload)
    return items


class TransformProvider(BaseProvider):
    """Reads the harvested bindings and writes a concept tree or list."""

    kind = ProviderKind.TRANSFORM

    def run(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        transform = optional_str(config, "transform", "json_tree") or "json_tree"
        artifact_key = _OUTPUTS.get(transform)
        if artifact_key is None:
            raise StepConfigurationError(
                message=f"Unknown transform {transform!r}; expected one of {sorted(_OUTPUTS)}.",
            )

        harvest_path = Path(context.require(HARVEST_PATH))
        concepts = collect_concepts(parse_bindings(harvest_path.read_bytes()))
        if not concepts:
            raise DataFormatError(message=f"No concepts found in {harvest_path}.")

        payload = build_tree(concepts) if artifact_key == CONCEPTS_TREE else build_list(concepts)
        try:
            target = write_json(context.version_dir / "transform" / f"{artifact_key}.json", payload)
        except RecursionError as exc:
            raise DataFormatError(
                message=f"Concept hierarchy is too deep to write as {transform}; use json_list.",
            ) from exc
        logger.info(
            "Wrote %s with %d concepts (vocabulary=%s version=%s).",
            artifact_key,
            len(concepts),
            context.vocabulary_id,
            context.version_id,
        )
        return StepOutcome.success(
            f"Built {artifact_key} from {len(concepts)} concepts.",
            **{artifact_key: str(target)},
        )
