"""
Unit tests for kg_builder.enrichers.embedding

HTTP and OpenAI calls are mocked; retries run with a zero delay.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from kg_builder.enrichers.embedding import (
    OpenAIEmbedder,
    TEIEmbedder,
    create_embedder,
)


def _response(payload=None, error=None):
    resp = MagicMock()
    resp.json.return_value = payload
    if error is not None:
        resp.raise_for_status.side_effect = error
    return resp


def _tei(session):
    return TEIEmbedder("http://tei:80/", session=session, retry_delay=0)


class TestTEIEmbedder:

    def test_nested_response(self):
        session = MagicMock()
        session.post.return_value = _response([[0.1, 0.2, 0.3]])

        assert _tei(session).embed("hello") == [0.1, 0.2, 0.3]
        args, kwargs = session.post.call_args
        assert args[0] == "http://tei:80/embed"
        assert kwargs["json"] == {"inputs": "hello"}

    def test_flat_response(self):
        session = MagicMock()
        session.post.return_value = _response([1, 2])
        assert _tei(session).embed("hello") == [1.0, 2.0]

    def test_empty_text_skips_request(self):
        session = MagicMock()
        assert _tei(session).embed("") == []
        session.post.assert_not_called()

    def test_retries_then_succeeds(self):
        session = MagicMock()
        session.post.side_effect = [
            requests.ConnectionError("refused"),
            _response([[0.5]]),
        ]
        assert _tei(session).embed("hello") == [0.5]
        assert session.post.call_count == 2

    def test_gives_up_after_max_retries(self):
        session = MagicMock()
        session.post.return_value = _response(error=requests.HTTPError("503"))

        assert _tei(session).embed("hello") == []
        assert session.post.call_count == 3

    def test_empty_payload_counts_as_failure(self):
        session = MagicMock()
        session.post.return_value = _response([])
        embedder = TEIEmbedder("http://tei", session=session, max_retries=1)
        assert embedder.embed("hello") == []


class TestOpenAIEmbedder:

    def test_passes_dimensions(self):
        client = MagicMock()
        client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.25, 0.75])]
        )
        embedder = OpenAIEmbedder(client, "text-embedding-3-small", dimensions=2)

        assert embedder.embed("text") == [0.25, 0.75]
        client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input="text", dimensions=2
        )

    def test_without_dimensions(self):
        client = MagicMock()
        client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=[1.0])]
        )
        OpenAIEmbedder(client, "m").embed("text")
        assert "dimensions" not in client.embeddings.create.call_args.kwargs


class TestCreateEmbedder:

    def _config(self, **overrides):
        values = dict(
            EMBEDDING_PROVIDER="tei",
            EMBEDDING_URL="http://tei:80",
            EMBEDDING_MODEL="text-embedding-3-small",
            OPENAI_API_KEY="",
            OPENAI_BASE_URL=None,
            VECTOR_SIZE=768,
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_tei(self):
        embedder = create_embedder(self._config())
        assert isinstance(embedder, TEIEmbedder)
        assert embedder.url == "http://tei:80"

    def test_openai_requires_key(self):
        pytest.importorskip("openai")
        with pytest.raises(EnvironmentError):
            create_embedder(self._config(EMBEDDING_PROVIDER="openai"))

    def test_openai(self):
        pytest.importorskip("openai")
        embedder = create_embedder(
            self._config(EMBEDDING_PROVIDER="openai", OPENAI_API_KEY="sk-test")
        )
        assert isinstance(embedder, OpenAIEmbedder)
        assert embedder.dimensions == 768

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_embedder(self._config(EMBEDDING_PROVIDER="word2vec"))
