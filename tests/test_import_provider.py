from __future__ import annotations

import json
from pathlib import Path

import allure
import httpx

from vocab_toolkit.http.solr import SolrIndexSink
from vocab_toolkit.providers.harvest import HARVEST_PATH
from vocab_toolkit.providers.importer import IMPORT_SUMMARY, ImportProvider
from vocab_toolkit.providers.transform import CONCEPTS_TREE
from vocab_toolkit.storage.repository import TaskRepository
from vocab_toolkit.tasks.context import RunContext

pytestmark = [
    allure.epic("Providers"),
    allure.feature("Import"),
]

_TREE = [
    {
        "iri": "http://example.org/c/animals",
        "prefLabel": "Animals",
        "notation": "A",
        "narrower": [
            {"iri": "http://example.org/c/cats", "prefLabel": "Cats"},
        ],
    },
    {"iri": "http://example.org/c/plants", "prefLabel": "Plants"},
]


class _RecordingSink:
    def __init__(self) -> None:
        self.published: list[tuple[str, str, list[dict]]] = []

    def publish(self, *, vocabulary_id, version_id, documents) -> int:
        self.published.append((vocabulary_id, version_id, list(documents)))
        return len(documents)


def _context(tmp_path: Path) -> RunContext:
    context = RunContext(vocabulary_id="fauna", version_id="v1", vocabs_root=tmp_path)
    tree_path = tmp_path / "tree.json"
    tree_path.write_text(json.dumps(_TREE), encoding="utf-8")
    context.commit({HARVEST_PATH: str(tmp_path / "raw.json"), CONCEPTS_TREE: str(tree_path)})
    return context


def test_import_registers_artefacts_and_publishes_documents(
    repository: TaskRepository,
    tmp_path: Path,
) -> None:
    sink = _RecordingSink()
    provider = ImportProvider(artefact_store=repository, index_sink=sink)

    outcome = provider.execute({}, _context(tmp_path))

    assert outcome.succeeded, outcome.message
    assert outcome.artifacts[IMPORT_SUMMARY] == "registry=2 index=3"
    assert [item.kind for item in repository.list_artefacts("fauna", "v1")] == [
        "concepts_tree",
        "harvest_path",
    ]
    _, _, documents = sink.published[0]
    assert [doc["id"] for doc in documents] == [
        "fauna/v1/http://example.org/c/animals",
        "fauna/v1/http://example.org/c/cats",
        "fauna/v1/http://example.org/c/plants",
    ]
    assert documents[0]["notation"] == "A"


def test_import_targets_can_be_limited(tmp_path: Path) -> None:
    sink = _RecordingSink()

    outcome = ImportProvider(index_sink=sink).execute({"targets": "index"}, _context(tmp_path))

    assert outcome.succeeded, outcome.message
    assert outcome.artifacts[IMPORT_SUMMARY] == "index=3"


def test_import_without_registry_store_fails_with_configuration(tmp_path: Path) -> None:
    outcome = ImportProvider().execute({"targets": ["registry"]}, _context(tmp_path))

    assert not outcome.succeeded
    assert outcome.error_code == "configuration"


def test_import_requires_harvested_or_transformed_concepts(tmp_path: Path) -> None:
    context = RunContext(vocabulary_id="fauna", version_id="v1", vocabs_root=tmp_path)

    outcome = ImportProvider(index_sink=_RecordingSink()).execute({}, context)

    assert outcome.error_code == "missing_artifact"


def test_untransformed_version_is_indexed_from_harvested_bindings(
    repository: TaskRepository,
    tmp_path: Path,
    harvest_file: Path,
) -> None:
    sink = _RecordingSink()
    context = RunContext(vocabulary_id="fauna", version_id="v1", vocabs_root=tmp_path)
    context.commit({HARVEST_PATH: str(harvest_file)})

    outcome = ImportProvider(artefact_store=repository, index_sink=sink).execute({}, context)

    assert outcome.succeeded, outcome.message
    assert outcome.artifacts[IMPORT_SUMMARY] == "registry=1 index=4"
    _, _, documents = sink.published[0]
    assert [doc["prefLabel"] for doc in documents] == ["Animals", "Birds", "Cats", "Plants"]
    assert documents[2]["definition"] == "Small felines."


def test_solr_sink_replaces_version_documents(tmp_path: Path) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"responseHeader": {"status": 0}})

    sink = SolrIndexSink(
        base_url="https://solr.example.org/solr/",
        collection="concepts",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    outcome = ImportProvider(index_sink=sink).execute({"targets": ["index"]}, _context(tmp_path))

    assert outcome.succeeded, outcome.message
    assert [str(request.url) for request in seen] == [
        "https://solr.example.org/solr/concepts/update?commit=true",
        "https://solr.example.org/solr/concepts/update?commit=true",
    ]
    assert json.loads(seen[0].content) == {"delete": {"query": 'version_key:"fauna/v1"'}}
    docs = json.loads(seen[1].content)
    assert {doc["version_key"] for doc in docs} == {"fauna/v1"}


def test_solr_rejection_and_outage_are_distinguished(tmp_path: Path) -> None:
    def sink_answering(status: int) -> SolrIndexSink:
        return SolrIndexSink(
            base_url="https://solr.example.org/solr",
            collection="concepts",
            client=httpx.Client(
                transport=httpx.MockTransport(lambda request: httpx.Response(status, text="no")),
            ),
        )

    rejected = ImportProvider(index_sink=sink_answering(400)).execute(
        {"targets": "index"},
        _context(tmp_path),
    )
    down = ImportProvider(index_sink=sink_answering(503)).execute(
        {"targets": "index"},
        _context(tmp_path),
    )

    assert (rejected.error_code, rejected.retryable) == ("sink_rejected", False)
    assert (down.error_code, down.retryable) == ("http_503", True)


def test_index_import_without_sink_or_url_fails_with_configuration(tmp_path: Path) -> None:
    outcome = ImportProvider().execute({"targets": "index"}, _context(tmp_path))

    assert outcome.error_code == "configuration"
