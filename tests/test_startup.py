"""
Unit tests for kg_builder.startup
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests

from kg_builder.errors import KGBuilderError
from kg_builder.startup import (
    Dependency,
    build_dependencies,
    check_http,
    wait_for_dependencies,
    wait_for_dependency,
)


def _config(**overrides):
    values = dict(
        EMBEDDING_PROVIDER="tei",
        EMBEDDING_URL="http://tei:80",
        QDRANT_URL="http://qdrant:6333/",
        GRAPH_BACKEND="neo4j",
        NEO4J_URL="bolt://neo4j:7687",
        NEO4J_USER="neo4j",
        NEO4J_PASSWORD="pw",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestBuildDependencies:

    def test_all_remote(self):
        names = [d.name for d in build_dependencies(_config())]
        assert names == ["Embedding service", "Qdrant", "Neo4j"]

    def test_local_backends(self):
        config = _config(EMBEDDING_PROVIDER="openai", QDRANT_URL=":memory:",
                         GRAPH_BACKEND="networkx")
        assert build_dependencies(config) == []

    def test_qdrant_health_endpoint(self):
        deps = build_dependencies(_config(EMBEDDING_PROVIDER="openai", GRAPH_BACKEND="networkx"))
        with patch("kg_builder.startup.requests.get") as get:
            deps[0].check()
        assert get.call_args.args[0] == "http://qdrant:6333/healthz"


class TestCheckHttp:

    def test_raises_on_error_status(self):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("503")
        with patch("kg_builder.startup.requests.get", return_value=response):
            with pytest.raises(requests.HTTPError):
                check_http("http://tei:80")


class TestWaitForDependency:

    def test_succeeds_after_retries(self):
        check = MagicMock(side_effect=[ConnectionError("down"), ConnectionError("down"), None])
        wait_for_dependency(Dependency("svc", check), retries=5, delay=0)
        assert check.call_count == 3

    def test_gives_up(self):
        check = MagicMock(side_effect=ConnectionError("down"))
        with pytest.raises(KGBuilderError, match="svc not reachable after 3 attempts"):
            wait_for_dependency(Dependency("svc", check), retries=3, delay=0)
        assert check.call_count == 3

    def test_wait_for_all(self):
        config = _config(EMBEDDING_PROVIDER="openai", GRAPH_BACKEND="networkx")
        with patch("kg_builder.startup.requests.get") as get:
            wait_for_dependencies(config, retries=1, delay=0)
        get.assert_called_once()
