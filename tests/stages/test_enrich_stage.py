"""
Unit tests for kg_builder.stages.enrich
"""

from __future__ import annotations

import pytest

from kg_builder.errors import StageInputError
from kg_builder.models import EnrichedEntity, ParsedEntity, ParsedRelationship, ParseOutput
from kg_builder.stages.enrich import EnrichStage
from kg_builder.stages.staging import read_artifact, write_artifact


class RecordingEnricher:
    """Enriches every entity it is given with a fixed purpose and vector."""

    def __init__(self, purpose):
        self.purpose = purpose
        self.seen: list[str] = []

    def enrich_batch(self, entities):
        self.seen.extend(e.id for e in entities)
        return [
            EnrichedEntity.from_parsed(e, purpose=self.purpose, embedding=[1.0, 0.0])
            for e in entities
        ]


def _parse_output():
    return ParseOutput(
        entities=[
            ParsedEntity(id="file:src/a.js", type="file", name="a.js", path="src/a.js"),
            ParsedEntity(id="function:src/a.js:f", type="function", name="f", path="src/a.js"),
            ParsedEntity(id="doc:README.md", type="document", name="README", path="README.md"),
            ParsedEntity(id="asset:package.json", type="asset", name="package.json",
                         path="package.json"),
        ],
        relationships=[
            ParsedRelationship.create("file:src/a.js", "DEFINES", "function:src/a.js:f"),
        ],
        metadata={
            "timestamp": "2024-01-01T00:00:00.000Z",
            "commit": "abc",
            "filesProcessed": 3,
            "mode": "incremental",
            "parsedFiles": ["README.md", "package.json", "src/a.js"],
            "deletedFiles": ["old.md"],
        },
    )


class TestEnrichStage:

    @pytest.fixture()
    def enrichers(self):
        return RecordingEnricher("code"), RecordingEnricher("doc")

    def test_routes_entities_by_type(self, staging_dir, build_config, enrichers):
        write_artifact(str(staging_dir), "parse", _parse_output().to_dict())
        code, doc = enrichers
        EnrichStage(code, doc).execute(build_config())

        assert code.seen == ["function:src/a.js:f"]
        assert sorted(doc.seen) == ["asset:package.json", "doc:README.md"]

    def test_keeps_every_entity_in_order(self, staging_dir, build_config, enrichers):
        write_artifact(str(staging_dir), "parse", _parse_output().to_dict())
        output = EnrichStage(*enrichers).execute(build_config())

        assert [e.id for e in output.entities] == [
            "file:src/a.js", "function:src/a.js:f", "doc:README.md", "asset:package.json",
        ]
        by_id = {e.id: e for e in output.entities}
        assert not by_id["file:src/a.js"].has_embedding()
        assert by_id["function:src/a.js:f"].purpose == "code"
        assert by_id["doc:README.md"].purpose == "doc"
        assert len(output.relationships) == 1

    def test_metadata_forwards_build_scope(self, staging_dir, build_config, enrichers):
        write_artifact(str(staging_dir), "parse", _parse_output().to_dict())
        output = EnrichStage(*enrichers).execute(build_config())

        assert output.metadata["entitiesEnriched"] == 3
        assert output.metadata["commit"] == "abc"
        assert output.metadata["mode"] == "incremental"
        assert output.metadata["parsedFiles"] == ["README.md", "package.json", "src/a.js"]
        assert output.metadata["deletedFiles"] == ["old.md"]
        assert "filesProcessed" not in output.metadata

    def test_artifact_written(self, staging_dir, build_config, enrichers):
        write_artifact(str(staging_dir), "parse", _parse_output().to_dict())
        EnrichStage(*enrichers).execute(build_config())

        data = read_artifact(str(staging_dir), "enrich")
        assert data["entities"][1]["embedding"] == [1.0, 0.0]
        assert "embedding" not in data["entities"][0]

    def test_missing_parse_output(self, build_config, enrichers):
        with pytest.raises(StageInputError):
            EnrichStage(*enrichers).execute(build_config())

    def test_real_enrichers_degrade_without_services(self, staging_dir, build_config):
        from conftest import FixedEmbedder
        from kg_builder.enrichers import CodeEnricher, DocEnricher

        write_artifact(str(staging_dir), "parse", _parse_output().to_dict())
        embedder = FixedEmbedder(fail=True)
        stage = EnrichStage(
            CodeEnricher(embedder, client=None, batch_delay=0),
            DocEnricher(embedder),
        )
        output = stage.execute(build_config())

        assert len(output.entities) == 4
        assert not any(e.has_embedding() for e in output.entities)
        doc = next(e for e in output.entities if e.id == "doc:README.md")
        assert doc.semantic_description == "No content available."
