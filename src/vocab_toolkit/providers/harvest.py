"""Harvest provider: pull raw vocabulary data into local storage."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

import httpx

from vocab_toolkit.http.sparql import SparqlClient, parse_bindings
from vocab_toolkit.providers.base import (
    BaseProvider,
    optional_float,
    optional_str,
    require_str,
    write_json,
)
from vocab_toolkit.tasks.context import RunContext
from vocab_toolkit.tasks.errors import DataFormatError, StepConfigurationError
from vocab_toolkit.tasks.models import ProviderKind, StepOutcome

logger = logging.getLogger(__name__)

HARVEST_PATH = "harvest_path"
DEFAULT_CONCEPTS_QUERY = """\
PREFIX skos: <http://www.w3.org/2004/02/skos/core#>
SELECT ?concept ?prefLabel ?broader ?notation ?definition WHERE {
  ?concept a skos:Concept ;
           skos:prefLabel ?prefLabel .
  OPTIONAL { ?concept skos:broader ?broader }
  OPTIONAL { ?concept skos:notation ?notation }
  OPTIONAL { ?concept skos:definition ?definition }
}
"""


class HarvestSource(Protocol):
    """Opaque fetch of raw SPARQL-results JSON for a vocabulary."""

    def fetch(self, config: Mapping[str, Any], *, timeout_seconds: float) -> bytes:
        raise NotImplementedError


class SparqlHarvestSource:
    """Runs the concept query against a public SPARQL endpoint."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client

    def fetch(self, config: Mapping[str, Any], *, timeout_seconds: float) -> bytes:
        endpoint = require_str(config, "endpoint")
        query = optional_str(config, "query") or DEFAULT_CONCEPTS_QUERY
        with SparqlClient(endpoint, timeout_seconds=timeout_seconds, client=self._client) as client:
            return client.select(query).raw


class PoolPartyHarvestSource:
    """Runs the concept query against a PoolParty project's SPARQL endpoint."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client

    def fetch(self, config: Mapping[str, Any], *, timeout_seconds: float) -> bytes:
        api_url = require_str(config, "api_url")
        project_id = require_str(config, "project_id")
        username = optional_str(config, "username")
        password = optional_str(config, "password")
        query = optional_str(config, "query") or DEFAULT_CONCEPTS_QUERY
        endpoint = f"{api_url.rstrip('/')}/sparql/{project_id}"
        auth = (username, password) if username else None
        with SparqlClient(
            endpoint,
            timeout_seconds=timeout_seconds,
            auth=auth,
            client=self._client,
        ) as client:
            return client.select(query).raw


class FileHarvestSource:
    """Reads an uploaded SPARQL-results JSON file."""

    def fetch(self, config: Mapping[str, Any], *, timeout_seconds: float) -> bytes:  # noqa: ARG002
        path = Path(require_str(config, "path"))
        if not path.is_file():
            raise StepConfigurationError(message=f"Uploaded file not found: {path}")
        return path.read_bytes()


def default_harvest_sources(client: httpx.Client | None = None) -> dict[str, HarvestSource]:
    return {
        "sparql": SparqlHarvestSource(client),
        "poolparty": PoolPartyHarvestSource(client),
        "file": FileHarvestSource(),
    }


class HarvestProvider(BaseProvider):
    """Fetches concept bindings and stores them under the version's harvest_data dir."""

    kind = ProviderKind.HARVEST

    def __init__(
        self,
        *,
        sources: Mapping[str, HarvestSource] | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.sources = dict(sources) if sources is not None else default_harvest_sources()
        self.timeout_seconds = timeout_seconds

    def run(self, config: Mapping[str, Any], context: RunContext) -> StepOutcome:
        source_name = require_str(config, "source").lower()
        source = self.sources.get(source_name)
        if source is None:
            raise StepConfigurationError(
                message=f"Unknown harvest source {source_name!r}; "
                f"expected one of {sorted(self.sources)}.",
            )
        timeout = optional_float(config, "timeout_seconds", self.timeout_seconds)

        raw = source.fetch(config, timeout_seconds=timeout)
        raw_path = context.scratch_dir() / "harvest_raw.json"
        raw_path.write_bytes(raw)

        bindings = parse_bindings(raw)
        if not bindings:
            raise DataFormatError(message=f"Harvest from {source_name!r} returned no concepts.")

        target = context.version_dir / "harvest_data" / "concepts.json"
        write_json(target, {"results": {"bindings": bindings}})
        logger.info(
            "Harvested %d bindings from %s (vocabulary=%s version=%s).",
            len(bindings),
            source_name,
            context.vocabulary_id,
            context.version_id,
        )
        return StepOutcome.success(
            f"Harvested {len(bindings)} bindings from {source_name}.",
            **{HARVEST_PATH: str(target)},
        )
