"""Shared fixtures for the kg_builder test-suite."""

from __future__ import annotations

import pytest

from kg_builder.enrichers.embedding import Embedder
from kg_builder.models import BuildConfig


class FixedEmbedder(Embedder):
    """Returns a constant vector and records every text it was asked to embed."""

    name = "fixed embedding"

    def __init__(self, dimension: int = 4, fail: bool = False) -> None:
        super().__init__(max_retries=1, retry_delay=0)
        self.dimension = dimension
        self.fail = fail
        self.calls: list[str] = []

    def _embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        return [0.5] * self.dimension


@pytest.fixture()
def embedder():
    return FixedEmbedder()


@pytest.fixture()
def repo_dir(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture()
def staging_dir(tmp_path):
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture()
def build_config(repo_dir, staging_dir):
    """Factory for :class:`BuildConfig` rooted in the temporary repo/staging dirs."""

    def _make(mode: str = "full", project_id: str = "default", base_commit=None):
        return BuildConfig(
            repo_path=str(repo_dir),
            staging_path=str(staging_dir),
            mode=mode,
            project_id=project_id,
            base_commit=base_commit,
        )

    return _make


def write_files(root, files: dict) -> None:
    """Create ``{relative_path: text}`` under *root*."""
    for rel_path, text in files.items():
        target = root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
