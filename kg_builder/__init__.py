"""
kg_builder — knowledge-graph build pipeline.

Scans a source repository, extracts entities and relationships, enriches
them with summaries and embeddings, and loads the result into a graph store
and a vector store.

Library usage::

    from kg_builder import BuildService, BuildRequest, Config

    service = BuildService(Config.load())
    service.start_build(BuildRequest(mode="full"))
    summary = service.wait()
"""

from .config import Config
from .models import BuildRequest, BuildRunSummary, BuildStatus
from .service import BuildService

__version__ = "1.0.0"

__all__ = ["BuildRequest", "BuildRunSummary", "BuildService", "BuildStatus", "Config"]
