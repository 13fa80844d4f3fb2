"""
Unit tests for kg_builder.stages.populate

Runs against the in-process NetworkX graph store and an in-memory Qdrant
client, so no external services are required.
"""

from __future__ import annotations

import pytest

from kg_builder.errors import DimensionMismatchError
from kg_builder.models import EnrichedEntity, EnrichOutput, ParsedRelationship
from kg_builder.stages.populate import PopulateStage, prune_scope
from kg_builder.stages.staging import write_artifact
from kg_builder.stores.graph_store import NetworkXGraphStore
from kg_builder.stores.vector_store import QdrantStore

DIM = 4


def _entity(eid, path, embedded=True):
    prefix = eid.split(":", 1)[0]
    etype = "document" if prefix == "doc" else prefix
    return EnrichedEntity(
        id=eid,
        type=etype,
        name=eid.rsplit(":", 1)[-1],
        path=path,
        content=f"content of {eid}",
        embedding=[0.1, 0.2, 0.3, 0.4] if embedded else None,
    )


def _write(staging_dir, entities, relationships=(), metadata=None):
    output = EnrichOutput(
        entities=list(entities),
        relationships=list(relationships),
        metadata=metadata or {},
    )
    write_artifact(str(staging_dir), "enrich", output.to_dict())


@pytest.fixture()
def qdrant_client():
    pytest.importorskip("qdrant_client")
    from qdrant_client import QdrantClient
    client = QdrantClient(location=":memory:")
    yield client
    client.close()


@pytest.fixture()
def graph():
    return NetworkXGraphStore()


@pytest.fixture()
def stage(graph, qdrant_client):
    return PopulateStage(
        graph_store_factory=lambda: graph,
        vector_store_factory=lambda project_id: QdrantStore(
            ":memory:", project_id, vector_size=DIM, client=qdrant_client
        ),
    )


def _points(qdrant_client, project_id="default"):
    return QdrantStore(":memory:", project_id, vector_size=DIM, client=qdrant_client).count()


# ---------------------------------------------------------------------------
# prune_scope
# ---------------------------------------------------------------------------

class TestPruneScope:

    def test_union_of_parsed_and_deleted(self):
        assert prune_scope({"parsedFiles": ["b.js", "a.js"], "deletedFiles": ["c.md"]}) == \
            ["a.js", "b.js", "c.md"]

    def test_missing_keys_mean_project_wide(self):
        assert prune_scope({"commit": "x"}) is None

    def test_empty_lists_mean_nothing(self):
        assert prune_scope({"parsedFiles": [], "deletedFiles": []}) == []


# ---------------------------------------------------------------------------
# PopulateStage
# ---------------------------------------------------------------------------

class TestPopulateStage:

    def test_loads_graph_and_vectors(self, stage, graph, qdrant_client, staging_dir,
                                     build_config):
        _write(
            staging_dir,
            [
                _entity("file:src/a.js", "src/a.js", embedded=False),
                _entity("function:src/a.js:f", "src/a.js"),
                _entity("doc:README.md", "README.md"),
            ],
            [
                ParsedRelationship.create("file:src/a.js", "DEFINES", "function:src/a.js:f"),
                ParsedRelationship.create("file:src/a.js", "IMPORTS", "module:fs"),
                ParsedRelationship.create("file:src/a.js", "CALLS", "function:src/a.js:f"),
            ],
        )
        result = stage.execute(build_config(mode="full"))

        assert result.entities == 3
        assert result.relationships == 3
        assert result.vector_points == 2
        assert result.pruned == 0
        assert graph.node_ids("default") == {
            "file:src/a.js", "function:src/a.js:f", "doc:README.md",
        }
        assert graph.relationships("default") == [
            ("file:src/a.js", "DEFINES", "function:src/a.js:f"),
        ]
        assert _points(qdrant_client) == 2

    def test_idempotent(self, stage, graph, qdrant_client, staging_dir, build_config):
        _write(
            staging_dir,
            [_entity("file:a.js", "a.js"), _entity("function:a.js:f", "a.js")],
            [ParsedRelationship.create("file:a.js", "DEFINES", "function:a.js:f")],
        )
        stage.execute(build_config(mode="full"))
        stage.execute(build_config(mode="full"))

        assert graph.stats("default") == {"nodes": 2, "relationships": 1}
        assert _points(qdrant_client) == 2

    def test_incremental_prunes_missing_entities(self, stage, graph, qdrant_client,
                                                 staging_dir, build_config):
        a, b, c = (_entity(f"doc:{n}.md", f"{n}.md") for n in "abc")
        _write(staging_dir, [a, b, c])
        stage.execute(build_config(mode="full"))

        _write(staging_dir, [a, b], metadata={"mode": "incremental"})
        result = stage.execute(build_config(mode="incremental"))

        assert result.pruned == 1
        assert graph.node_ids("default") == {"doc:a.md", "doc:b.md"}
        assert _points(qdrant_client) == 2

    def test_full_mode_never_prunes(self, stage, graph, staging_dir, build_config):
        a, b, c = (_entity(f"doc:{n}.md", f"{n}.md") for n in "abc")
        _write(staging_dir, [a, b, c])
        stage.execute(build_config(mode="full"))

        _write(staging_dir, [a, b])
        result = stage.execute(build_config(mode="full"))

        assert result.pruned == 0
        assert graph.node_ids("default") == {"doc:a.md", "doc:b.md", "doc:c.md"}

    def test_incremental_prune_is_scoped_to_touched_files(self, stage, graph, qdrant_client,
                                                          staging_dir, build_config):
        _write(staging_dir, [
            _entity("file:src/a.js", "src/a.js"),
            _entity("function:src/a.js:old", "src/a.js"),
            _entity("file:src/b.js", "src/b.js"),
            _entity("function:src/b.js:g", "src/b.js"),
            _entity("doc:README.md", "README.md"),
        ])
        stage.execute(build_config(mode="full"))
        untouched_stamp = graph.get_node("default", "doc:README.md")["updatedAt"]

        _write(
            staging_dir,
            [_entity("file:src/a.js", "src/a.js"), _entity("function:src/a.js:f", "src/a.js")],
            metadata={"parsedFiles": ["src/a.js"], "deletedFiles": ["src/b.js"]},
        )
        result = stage.execute(build_config(mode="incremental"))

        assert result.pruned == 3
        assert graph.node_ids("default") == {
            "file:src/a.js", "function:src/a.js:f", "doc:README.md",
        }
        assert graph.get_node("default", "doc:README.md")["updatedAt"] == untouched_stamp
        assert _points(qdrant_client) == 3

    def test_projects_are_isolated(self, stage, graph, staging_dir, build_config):
        _write(staging_dir, [_entity("doc:a.md", "a.md")])
        stage.execute(build_config(mode="full", project_id="alpha"))
        _write(staging_dir, [_entity("doc:b.md", "b.md")])
        stage.execute(build_config(mode="incremental", project_id="beta"))

        assert graph.node_ids("alpha") == {"doc:a.md"}
        assert graph.node_ids("beta") == {"doc:b.md"}

    def test_wrong_dimension_embedding_skipped(self, stage, qdrant_client, staging_dir,
                                               build_config):
        bad = _entity("doc:bad.md", "bad.md")
        bad.embedding = [0.1, 0.2]
        _write(staging_dir, [_entity("doc:good.md", "good.md"), bad])

        result = stage.execute(build_config(mode="full"))

        assert result.vector_points == 1
        assert _points(qdrant_client) == 1

    def test_collection_dimension_mismatch(self, graph, qdrant_client, staging_dir,
                                           build_config):
        QdrantStore(":memory:", "default", vector_size=8, client=qdrant_client).ensure_collection()
        stage = PopulateStage(
            graph_store_factory=lambda: graph,
            vector_store_factory=lambda project_id: QdrantStore(
                ":memory:", project_id, vector_size=DIM, client=qdrant_client
            ),
        )
        _write(staging_dir, [_entity("doc:a.md", "a.md")])

        with pytest.raises(DimensionMismatchError):
            stage.execute(build_config(mode="full"))
