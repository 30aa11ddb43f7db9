"""Search index sink publishing concept documents to Solr."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from vocab_toolkit.tasks.errors import SinkRejectedError, SourceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class IndexSink(Protocol):
    """Opaque publish operation for canonical concept documents."""

    def publish(
        self,
        *,
        vocabulary_id: str,
        version_id: str,
        documents: Sequence[dict[str, Any]],
    ) -> int:
        """Replace the version's documents in the index; return the count published."""
        raise NotImplementedError


class SolrIndexSink:
    """Posts JSON updates to a Solr collection."""

    def __init__(
        self,
        *,
        base_url: str,
        collection: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.update_url = f"{base_url.rstrip('/')}/{collection}/update"
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
        )
        self._timeout = timeout_seconds

    def publish(
        self,
        *,
        vocabulary_id: str,
        version_id: str,
        documents: Sequence[dict[str, Any]],
    ) -> int:
        version_key = f"{vocabulary_id}/{version_id}"
        docs = [{**document, "version_key": version_key} for document in documents]
        try:
            # Drop the version's previous documents so re-runs replace rather than append.
            response = self._client.post(
                self.update_url,
                params={"commit": "true"},
                json={"delete": {"query": f'version_key:"{version_key}"'}},
                timeout=self._timeout,
            )
            self._check(response)
            if docs:
                response = self._client.post(
                    self.update_url,
                    params={"commit": "true"},
                    json=docs,
                    timeout=self._timeout,
                )
                self._check(response)
        except httpx.HTTPError as exc:
            logger.warning("HTTP error publishing to %s: %s", self.update_url, exc)
            raise SourceUnavailableError(
                message=f"Cannot reach search index at {self.update_url}: {exc}",
            ) from exc

        logger.info("Published %d documents for %s to %s", len(docs), version_key, self.update_url)
        return len(docs)

    def _check(self, response: httpx.Response) -> None:
        if response.status_code >= 500:
            raise SourceUnavailableError(
                message=f"Search index answered HTTP {response.status_code}",
                code=f"http_{response.status_code}",
            )
        if not response.is_success:
            raise SinkRejectedError(
                message=f"Search index rejected update: HTTP {response.status_code} "
                f"{response.text[:200]}",
            )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> SolrIndexSink:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
