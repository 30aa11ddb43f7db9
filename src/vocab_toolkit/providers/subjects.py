"""Subject resolution: map free-text subjects to canonical subject IRIs."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from vocab_toolkit.http.sparql import SparqlClient, binding_value, escape_literal
from vocab_toolkit.providers.base import BaseProvider, optional_float, write_json
from vocab_toolkit.tasks.context import RunContext
from vocab_toolkit.tasks.errors import StepConfigurationError
from vocab_toolkit.tasks.models import ProviderKind, StepOutcome

logger = logging.getLogger(__name__)

RESOLVED_SUBJECTS = "resolved_subjects"
LOOKUP_QUERY_TEMPLATE = """\
PREFIX skos: <http://www.w3.org/2004/02/skos/core#>
SELECT ?concept WHERE {{
  {{ ?concept skos:prefLabel ?label . FILTER(str(?label) = "{label}") }}
  UNION
  {{ ?concept skos:notation ?notation . FILTER(str(?notation) = "{label}") }}
}}
LIMIT 1
"""


@dataclass(frozen=True, slots=True)
class SubjectRef:
    """Free-text subject tagged with the vocabulary source it belongs to."""

    source: str
    label: str


class SubjectResolveProvider(BaseProvider):
    """Looks up each subject label at the SPARQL endpoint configured for its source."""

    kind = ProviderKind.SUBJECT_RESOLVE

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._client = client
        self.timeout_seconds = timeout_seconds

    def run(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        subjects = _subjects(config)
        resolvers = _resolvers(config)
        timeout = optional_float(config, "timeout_seconds", self.timeout_seconds)

        resolved: list[dict[str, Any]] = []
        clients: dict[str, SparqlClient] = {}
        try:
            for subject in subjects:
                endpoint = resolvers.get(subject.source)
                iri = None
                if endpoint is None:
                    logger.info("No resolver configured for subject source %r.", subject.source)
                else:
                    client = clients.get(endpoint)
                    if client is None:
                        client = SparqlClient(
                            endpoint,
                            timeout_seconds=timeout,
                            client=self._client,
                        )
                        clients[endpoint] = client
                    iri = _lookup(client, subject.label)
                resolved.append(
                    {
                        "source": subject.source,
                        "label": subject.label,
                        "iri": iri,
                        "resolved": iri is not None,
                    },
                )
        finally:
            for client in clients.values():
                client.close()

        matched = sum(1 for item in resolved if item["resolved"])
        target = write_json(
            context.version_dir / "subjects" / "resolved_subjects.json",
            resolved,
        )
        return StepOutcome.success(
            f"Resolved {matched} of {len(resolved)} subjects.",
            **{RESOLVED_SUBJECTS: str(target)},
        )


def _lookup(client: SparqlClient, label: str) -> str | None:
    response = client.select(LOOKUP_QUERY_TEMPLATE.format(label=escape_literal(label)))
    for binding in response.bindings:
        iri = binding_value(binding, "concept")
        if iri:
            return iri
    return None


def _subjects(config: Mapping[str, Any]) -> list[SubjectRef]:
    raw = config.get("subjects")
    if not isinstance(raw, list):
        raise StepConfigurationError(message="Config key 'subjects' must be a list.")
    subjects: list[SubjectRef] = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise StepConfigurationError(message=f"Invalid subject entry: {item!r}")
        source = item.get("source")
        label = item.get("label")
        if not isinstance(source, str) or not source.strip():
            raise StepConfigurationError(message=f"Subject entry lacks 'source': {item!r}")
        if not isinstance(label, str) or not label.strip():
            raise StepConfigurationError(message=f"Subject entry lacks 'label': {item!r}")
        subjects.append(SubjectRef(source=source.strip(), label=label.strip()))
    return subjects


def _resolvers(config: Mapping[str, Any]) -> dict[str, str]:
    raw = config.get("resolvers") or {}
    if not isinstance(raw, Mapping):
        raise StepConfigurationError(message="Config key 'resolvers' must be an object.")
    resolvers: dict[str, str] = {}
    for source, endpoint in raw.items():
        if not isinstance(endpoint, str) or not endpoint.strip():
            raise StepConfigurationError(
                message=f"Resolver endpoint for {source!r} must be a non-empty string.",
            )
        resolvers[str(source)] = endpoint.strip()
    return resolvers
