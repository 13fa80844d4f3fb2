"""
Populate stage — writes the enrich artifact into the graph and vector
stores, then reconciles stale graph nodes in incremental mode.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..models import BuildConfig, EnrichOutput
from ..stores.graph_store import GraphStore
from ..stores.vector_store import QdrantStore
from .staging import read_artifact

logger = logging.getLogger(__name__)

STAGE_NAME = "populate"


@dataclass
class PopulateResult:
    entities: int
    relationships: int
    vector_points: int = 0
    pruned: int = 0


def prune_scope(metadata: dict) -> Optional[list[str]]:
    """
    Paths whose nodes may be pruned, or None for a project-wide sweep.

    The scope is every file this build re-parsed plus every file the diff
    removed; nodes belonging to untouched files are never candidates.
    """
    parsed = metadata.get("parsedFiles")
    deleted = metadata.get("deletedFiles")
    if parsed is None and deleted is None:
        return None
    return sorted(set(parsed or []) | set(deleted or []))


class PopulateStage:
    """
    Parameters
    ----------
    graph_store_factory:
        Callable returning a fresh :class:`GraphStore` for this run.
    vector_store_factory:
        Callable ``(project_id) -> QdrantStore``.
    """

    def __init__(
        self,
        graph_store_factory: Callable[[], GraphStore],
        vector_store_factory: Callable[[str], QdrantStore],
    ) -> None:
        self._graph_store_factory = graph_store_factory
        self._vector_store_factory = vector_store_factory

    def execute(self, config: BuildConfig) -> PopulateResult:
        logger.info("Starting populate stage")
        start_time = time.time()

        output = EnrichOutput.from_dict(read_artifact(config.staging_path, "enrich"))
        project_id = config.project_id

        graph = self._graph_store_factory()
        vectors = self._vector_store_factory(project_id)
        try:
            graph.initialize()
            vectors.ensure_collection()

            graph.upsert_entities(project_id, output.entities)
            graph.upsert_relationships(project_id, output.relationships)

            pruned: list[str] = []
            if config.mode == "incremental":
                current_ids = [e.id for e in output.entities]
                scope = prune_scope(output.metadata)
                pruned = graph.prune_stale(project_id, current_ids, scope)
                if pruned:
                    vectors.delete_entities(pruned)

            points = vectors.upsert_entities(output.entities)
        finally:
            graph.close()
            vectors.close()

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Populate stage complete: %d entities, %d relationships in %dms",
            len(output.entities), len(output.relationships), elapsed_ms,
        )
        return PopulateResult(
            entities=len(output.entities),
            relationships=len(output.relationships),
            vector_points=points,
            pruned=len(pruned),
        )
