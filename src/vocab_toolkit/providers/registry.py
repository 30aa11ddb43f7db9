"""Provider table keyed by ProviderKind."""

from __future__ import annotations

from collections.abc import Mapping

import httpx

from vocab_toolkit.config import Settings
from vocab_toolkit.http.solr import IndexSink
from vocab_toolkit.providers.base import Provider
from vocab_toolkit.providers.cleanup import CleanupProvider
from vocab_toolkit.providers.harvest import HarvestProvider, default_harvest_sources
from vocab_toolkit.providers.importer import ImportProvider
from vocab_toolkit.providers.subjects import SubjectResolveProvider
from vocab_toolkit.providers.transform import TransformProvider
from vocab_toolkit.storage.repository import ArtefactStore
from vocab_toolkit.tasks.models import ProviderKind


def build_providers(
    settings: Settings,
    *,
    artefact_store: ArtefactStore | None = None,
    index_sink: IndexSink | None = None,
    http_client: httpx.Client | None = None,
) -> dict[ProviderKind, Provider]:
    """Build the default provider for every kind.

    ``index_sink`` and ``http_client`` replace the network-backed defaults,
    mainly for tests.
    """

    timeout = settings.http.timeout_seconds
    providers: dict[ProviderKind, Provider] = {
        ProviderKind.HARVEST: HarvestProvider(
            sources=default_harvest_sources(http_client),
            timeout_seconds=timeout,
        ),
        ProviderKind.TRANSFORM: TransformProvider(),
        ProviderKind.IMPORT: ImportProvider(
            artefact_store=artefact_store,
            index_sink=index_sink,
        ),
        ProviderKind.SUBJECT_RESOLVE: SubjectResolveProvider(
            client=http_client,
            timeout_seconds=timeout,
        ),
        ProviderKind.CLEANUP: CleanupProvider(),
    }
    _check_complete(providers)
    return providers


def _check_complete(providers: Mapping[ProviderKind, Provider]) -> None:
    missing = [kind.value for kind in ProviderKind if kind not in providers]
    if missing:
        raise RuntimeError(f"Providers missing for kinds: {missing}")
