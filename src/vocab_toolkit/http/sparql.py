"""SPARQL endpoint client returning JSON result bindings."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from vocab_toolkit.tasks.errors import DataFormatError, SourceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
SPARQL_RESULTS_JSON = "application/sparql-results+json"
DEFAULT_USER_AGENT = "vocab-toolkit/1.0"
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(slots=True)
class SparqlResponse:
    """Raw body and parsed bindings of a SPARQL SELECT response."""

    raw: bytes
    bindings: list[dict[str, Any]]


class SparqlClient:
    """Issues SELECT queries against one endpoint.

    No retries happen here; the task runner owns retry policy.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        auth: tuple[str, str] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers={"User-Agent": DEFAULT_USER_AGENT},
            follow_redirects=True,
        )
        self._auth = httpx.BasicAuth(*auth) if auth else None
        self._timeout = timeout_seconds

    def select(self, query: str) -> SparqlResponse:
        try:
            response = self._client.post(
                self.endpoint,
                data={"query": query},
                headers={"Accept": SPARQL_RESULTS_JSON},
                auth=self._auth if self._auth is not None else httpx.USE_CLIENT_DEFAULT,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("Timeout querying SPARQL endpoint %s", self.endpoint)
            raise SourceUnavailableError(
                message=f"Timeout querying SPARQL endpoint {self.endpoint}",
                code="timeout",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error querying SPARQL endpoint %s: %s", self.endpoint, exc)
            raise SourceUnavailableError(
                message=f"Cannot reach SPARQL endpoint {self.endpoint}: {exc}",
            ) from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise SourceUnavailableError(
                message=f"SPARQL endpoint {self.endpoint} answered HTTP {response.status_code}",
                code=f"http_{response.status_code}",
            )
        if not response.is_success:
            raise SourceUnavailableError(
                message=f"SPARQL endpoint {self.endpoint} answered HTTP {response.status_code}",
                code=f"http_{response.status_code}",
                retryable=False,
            )
        return SparqlResponse(raw=response.content, bindings=parse_bindings(response.content))

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> SparqlClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def parse_bindings(raw: bytes | str) -> list[dict[str, Any]]:
    """Extract ``results.bindings`` from a SPARQL JSON results document."""

    try:
        document = json.loads(raw)
    except ValueError as exc:
        raise DataFormatError(message=f"SPARQL response is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise DataFormatError(message="SPARQL response must be a JSON object.")
    results = document.get("results")
    if not isinstance(results, dict) or not isinstance(results.get("bindings"), list):
        raise DataFormatError(message="SPARQL response has no results.bindings list.")
    bindings = results["bindings"]
    for binding in bindings:
        if not isinstance(binding, dict):
            raise DataFormatError(message=f"Invalid SPARQL binding: {binding!r}")
    return bindings


def binding_value(binding: dict[str, Any], name: str) -> str | None:
    term = binding.get(name)
    if term is None:
        return None
    if not isinstance(term, dict) or "value" not in term:
        raise DataFormatError(message=f"Invalid SPARQL term for {name!r}: {term!r}")
    value = term["value"]
    if not isinstance(value, str):
        raise DataFormatError(message=f"Invalid SPARQL value for {name!r}: {value!r}")
    return value


def escape_literal(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
