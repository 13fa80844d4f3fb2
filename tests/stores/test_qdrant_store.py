"""
Unit tests for kg_builder.stores.vector_store

Uses ``QdrantClient(location=":memory:")``; skipped when qdrant-client is
not installed.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from kg_builder.errors import DimensionMismatchError
from kg_builder.models import EnrichedEntity
from kg_builder.stores.vector_store import QdrantStore, entity_payload, hash_entity_id


def _entity(eid, embedding=(1.0, 0.0, 0.0), etype="function", role=None):
    return EnrichedEntity(
        id=eid, type=etype, name=eid, path="src/a.js",
        content="x" * 900, architectural_role=role,
        embedding=list(embedding) if embedding is not None else None,
    )


class TestHashEntityId:

    def test_known_values(self):
        assert hash_entity_id("") == 0
        assert hash_entity_id("a") == 97
        assert hash_entity_id("abc") == 96354

    def test_negative_hash_is_made_positive(self):
        # 31-polynomial hash of this string is exactly -2**31
        assert hash_entity_id("polygenelubricants") == 2 ** 31

    def test_deterministic_and_in_range(self):
        value = hash_entity_id("function:src/store.js:load")
        assert value == hash_entity_id("function:src/store.js:load")
        assert 0 <= value <= 2 ** 31

    def test_known_collision(self):
        assert hash_entity_id("Aa") == hash_entity_id("BB")


class TestPayload:

    def test_content_capped(self):
        payload = entity_payload(_entity("f"))
        assert payload["entityId"] == "f"
        assert len(payload["content"]) == 500


@pytest.fixture()
def client():
    pytest.importorskip("qdrant_client")
    from qdrant_client import QdrantClient
    c = QdrantClient(location=":memory:")
    yield c
    c.close()


def _store(client, vector_size=3, project="default"):
    return QdrantStore(":memory:", project, vector_size=vector_size, client=client)


class TestQdrantStore:

    def test_collection_name(self):
        assert QdrantStore(":memory:", "alpha").collection == "alpha__code_graph"

    def test_ensure_collection_is_idempotent(self, client):
        store = _store(client)
        store.ensure_collection()
        store.ensure_collection()
        assert store.collection_info() == {"name": "default__code_graph", "points_count": 0}

    def test_dimension_mismatch(self, client):
        _store(client, vector_size=3).ensure_collection()
        with pytest.raises(DimensionMismatchError):
            _store(client, vector_size=5).ensure_collection()

    def test_upsert_skips_missing_and_wrong_embeddings(self, client):
        store = _store(client)
        store.ensure_collection()
        written = store.upsert_entities([
            _entity("a"),
            _entity("b", embedding=None),
            _entity("c", embedding=(1.0, 0.0)),
        ])
        assert written == 1
        assert store.count() == 1

    def test_upsert_overwrites_same_entity(self, client):
        store = _store(client)
        store.ensure_collection()
        store.upsert_entities([_entity("a")])
        store.upsert_entities([_entity("a", embedding=(0.0, 1.0, 0.0))])
        assert store.count() == 1

    def test_delete_entities(self, client):
        store = _store(client)
        store.ensure_collection()
        store.upsert_entities([_entity("a"), _entity("b")])

        assert store.delete_entities(["a", "missing"]) == 2
        assert store.count() == 1
        assert store.delete_entities([]) == 0

    def test_search_with_filter(self, client):
        store = _store(client)
        store.ensure_collection()
        store.upsert_entities([
            _entity("svc", embedding=(1.0, 0.0, 0.0), role="service"),
            _entity("util", embedding=(0.9, 0.1, 0.0), role="utility"),
        ])

        hits = store.search([1.0, 0.0, 0.0], top_k=5)
        assert [h["payload"]["entityId"] for h in hits] == ["svc", "util"]

        hits = store.search([1.0, 0.0, 0.0], filters={"architecturalRole": "utility"})
        assert [h["payload"]["entityId"] for h in hits] == ["util"]
        assert hits[0]["id"] == hash_entity_id("util")

    def test_collection_info_missing(self, client):
        assert _store(client, project="nobody").collection_info() is None

    def test_close_leaves_injected_client_open(self):
        injected = MagicMock()
        QdrantStore(":memory:", "p", client=injected).close()
        injected.close.assert_not_called()
