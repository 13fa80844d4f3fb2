"""
Unit tests for kg_builder.enrichers.code

The chat model is a MagicMock shaped like ``openai.OpenAI``.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from conftest import FixedEmbedder

from kg_builder.enrichers.code import (
    CODE_EMBED_CHARS,
    CodeEnricher,
    build_prompt,
    create_chat_client,
    normalize_semantic,
)
from kg_builder.models import ParsedEntity


def _entity(name="load", content="function load() { return 1; }"):
    return ParsedEntity(
        id=f"function:src/a.js:{name}",
        type="function",
        name=name,
        path="src/a.js",
        content=content,
        metadata={"params": [], "async": False},
    )


def _chat_client(reply: str):
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=reply))]
    )
    return client


SEMANTIC = {
    "semanticDescription": "Loads the store",
    "purpose": "Bootstrap data",
    "patterns": ["factory"],
    "architecturalRole": "service",
    "complexity": 3,
}


class TestNormalizeSemantic:

    def test_maps_fields(self):
        assert normalize_semantic(SEMANTIC) == {
            "semantic_description": "Loads the store",
            "purpose": "Bootstrap data",
            "patterns": ["factory"],
            "architectural_role": "service",
            "complexity": 3,
        }

    @pytest.mark.parametrize("value", [0, 11, "5", True, 2.5, None])
    def test_rejects_bad_complexity(self, value):
        assert "complexity" not in normalize_semantic({"complexity": value})

    def test_integral_float_complexity(self):
        assert normalize_semantic({"complexity": 7.0}) == {"complexity": 7}

    def test_drops_blank_strings(self):
        assert normalize_semantic({"purpose": "  ", "semanticDescription": 4}) == {}


class TestBuildPrompt:

    def test_contains_entity_details(self):
        prompt = build_prompt(_entity())
        assert "Analyze this function" in prompt
        assert "Name: load" in prompt
        assert '"params": []' in prompt

    def test_missing_content(self):
        assert "No content" in build_prompt(_entity(content=None))


class TestCodeEnricher:

    def test_semantic_and_embedding(self):
        client = _chat_client(json.dumps(SEMANTIC))
        enricher = CodeEnricher(FixedEmbedder(), client=client, model="gpt-test")

        enriched = enricher.enrich_entity(_entity())

        assert enriched.semantic_description == "Loads the store"
        assert enriched.complexity == 3
        assert enriched.embedding == [0.5] * 4
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_reply_wrapped_in_prose(self):
        client = _chat_client("Sure! ```json\n" + json.dumps(SEMANTIC) + "\n```")
        enriched = CodeEnricher(FixedEmbedder(), client=client).enrich_entity(_entity())
        assert enriched.purpose == "Bootstrap data"

    def test_unparseable_reply(self):
        client = _chat_client("I cannot help with that.")
        enriched = CodeEnricher(FixedEmbedder(), client=client).enrich_entity(_entity())
        assert enriched.semantic_description is None
        assert enriched.has_embedding()

    def test_chat_failure_keeps_embedding(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = RuntimeError("rate limited")
        enriched = CodeEnricher(FixedEmbedder(), client=client).enrich_entity(_entity())
        assert enriched.purpose is None
        assert enriched.has_embedding()

    def test_without_client_or_embedding(self):
        enriched = CodeEnricher(FixedEmbedder(fail=True)).enrich_entity(_entity())
        assert enriched.embedding is None
        assert enriched.semantic_description is None
        assert enriched.id == "function:src/a.js:load"

    def test_embedding_text_truncated(self):
        embedder = FixedEmbedder()
        CodeEnricher(embedder).enrich_entity(_entity(content="x" * 2000))
        assert embedder.calls[0].startswith("load\n")
        assert len(embedder.calls[0]) == CODE_EMBED_CHARS

    def test_batch_preserves_order(self):
        entities = [_entity(name=f"f{i}") for i in range(7)]
        enricher = CodeEnricher(FixedEmbedder(), batch_size=3, batch_delay=0)

        enriched = enricher.enrich_batch(entities)

        assert [e.id for e in enriched] == [e.id for e in entities]

    def test_empty_batch(self):
        assert CodeEnricher(FixedEmbedder()).enrich_batch([]) == []


class TestCreateChatClient:

    def test_no_key(self):
        config = SimpleNamespace(OPENAI_API_KEY="", OPENAI_BASE_URL=None)
        assert create_chat_client(config) is None
