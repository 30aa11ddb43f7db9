"""Runtime configuration for the vocabulary task pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class TaskSettings:
    """Task engine settings."""

    active_run_stale_after_seconds: int = 1_800
    retry_backoff_seconds: float = 1.0


@dataclass(slots=True)
class HttpSettings:
    """Settings shared by network-bound providers."""

    timeout_seconds: float = 30.0


@dataclass(slots=True)
class PoolPartySettings:
    """PoolParty connection defaults for harvest subtasks."""

    api_url: str = ""
    username: str = ""
    password: str = ""


@dataclass(slots=True)
class SolrSettings:
    """Search index sink settings."""

    url: str = ""
    collection: str = "concepts"


@dataclass(slots=True)
class SubjectResolverSettings:
    """Subject source name to SPARQL endpoint mapping."""

    resolvers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".vocab_toolkit.db")
    vocabs_root: Path = Path("vocabs")
    tasks: TaskSettings = field(default_factory=TaskSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    poolparty: PoolPartySettings = field(default_factory=PoolPartySettings)
    solr: SolrSettings = field(default_factory=SolrSettings)
    subject_resolvers: SubjectResolverSettings = field(default_factory=SubjectResolverSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local use."""

        return cls(
            db_path=db_path or Path(os.getenv("VOCAB_TOOLKIT_DB_PATH", ".vocab_toolkit.db")),
            vocabs_root=Path(os.getenv("VOCAB_TOOLKIT_VOCABS_ROOT", "vocabs")),
            tasks=TaskSettings(
                active_run_stale_after_seconds=int(
                    os.getenv("VOCAB_TOOLKIT_ACTIVE_RUN_STALE_AFTER_SECONDS", "1800"),
                ),
                retry_backoff_seconds=float(
                    os.getenv("VOCAB_TOOLKIT_RETRY_BACKOFF_SECONDS", "1.0"),
                ),
            ),
            http=HttpSettings(
                timeout_seconds=float(os.getenv("VOCAB_TOOLKIT_HTTP_TIMEOUT_SECONDS", "30.0")),
            ),
            poolparty=PoolPartySettings(
                api_url=os.getenv("VOCAB_TOOLKIT_POOLPARTY_API_URL", "").strip(),
                username=os.getenv("VOCAB_TOOLKIT_POOLPARTY_USERNAME", ""),
                password=os.getenv("VOCAB_TOOLKIT_POOLPARTY_PASSWORD", ""),
            ),
            solr=SolrSettings(
                url=os.getenv("VOCAB_TOOLKIT_SOLR_URL", "").strip(),
                collection=os.getenv("VOCAB_TOOLKIT_SOLR_COLLECTION", "concepts").strip(),
            ),
            subject_resolvers=SubjectResolverSettings(
                resolvers=_collect_subject_resolvers(),
            ),
        )

    def validate(self) -> None:
        """Raise ValueError if settings cannot drive a task run."""

        if self.tasks.active_run_stale_after_seconds <= 0:
            raise ValueError("VOCAB_TOOLKIT_ACTIVE_RUN_STALE_AFTER_SECONDS must be > 0.")
        if self.tasks.retry_backoff_seconds < 0:
            raise ValueError("VOCAB_TOOLKIT_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.http.timeout_seconds <= 0:
            raise ValueError("VOCAB_TOOLKIT_HTTP_TIMEOUT_SECONDS must be > 0.")
        if self.poolparty.api_url:
            _validate_http_url(self.poolparty.api_url, name="PoolParty API URL")
        if self.solr.url:
            _validate_http_url(self.solr.url, name="Solr URL")
            if not self.solr.collection:
                raise ValueError("VOCAB_TOOLKIT_SOLR_COLLECTION must not be empty.")
        for source, endpoint in self.subject_resolvers.resolvers.items():
            _validate_http_url(endpoint, name=f"Subject resolver endpoint for {source!r}")


def _collect_subject_resolvers() -> dict[str, str]:
    raw = os.getenv("VOCAB_TOOLKIT_SUBJECT_RESOLVERS", "").strip()
    if not raw:
        return {}

    resolvers: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "|" not in token:
            raise ValueError(
                "Invalid VOCAB_TOOLKIT_SUBJECT_RESOLVERS entry: "
                f"{token!r}. Expected format '<source>|<sparql_endpoint>'.",
            )
        source, endpoint = token.split("|", 1)
        source = source.strip()
        endpoint = endpoint.strip()
        if not source:
            raise ValueError(
                f"Invalid VOCAB_TOOLKIT_SUBJECT_RESOLVERS entry: {token!r} (empty source name)",
            )
        _validate_http_url(endpoint, name=f"Subject resolver endpoint for {source!r}")
        resolvers[source] = endpoint
    return resolvers


def _validate_http_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
