"""
Qdrant vector store for enriched entities.

Collection name: "{project}__code_graph"
Vector size: configurable (768 by default)
Distance: Cosine

Point ids are a deterministic 32-bit hash of the entity id, so repopulating
an unchanged entity overwrites its point.  Two distinct entity ids can hash
to the same point id; the later upsert wins.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..config import collection_name
from ..errors import DimensionMismatchError
from ..models import EnrichedEntity

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COLLECTION_BASE = "code_graph"
VECTOR_SIZE = 768
BATCH_SIZE = 100
PAYLOAD_CONTENT_CHARS = 500


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def hash_entity_id(entity_id: str) -> int:
    """
    Map an entity id to a non-negative 32-bit point id.

    ``h = 31 * h + unit`` over the UTF-16 code units of *entity_id*, wrapped
    to a signed 32-bit integer after every step; the absolute value of the
    final hash is returned.
    """
    h = 0
    encoded = entity_id.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def entity_payload(entity: EnrichedEntity) -> dict:
    return {
        "entityId": entity.id,
        "type": entity.type,
        "name": entity.name,
        "path": entity.path,
        "semanticDescription": entity.semantic_description,
        "purpose": entity.purpose,
        "patterns": entity.patterns,
        "architecturalRole": entity.architectural_role,
        "complexity": entity.complexity,
        "content": entity.content[:PAYLOAD_CONTENT_CHARS] if entity.content else None,
    }


# ---------------------------------------------------------------------------
# QdrantStore
# ---------------------------------------------------------------------------

class QdrantStore:
    """
    Thin wrapper around the Qdrant client, scoped to one project.

    Parameters
    ----------
    url:
        Qdrant HTTP URL, or ``":memory:"`` for an in-process store.
    project_id:
        Normalized project id; selects the collection.
    vector_size:
        Expected embedding dimension.
    client:
        Pre-built ``QdrantClient`` (tests).
    """

    def __init__(
        self,
        url: str,
        project_id: str,
        vector_size: int = VECTOR_SIZE,
        client=None,
    ) -> None:
        self.url = url
        self.project_id = project_id
        self.vector_size = vector_size
        self._collection = collection_name(project_id, COLLECTION_BASE)
        self._client = client
        self._owns_client = client is None

    @property
    def collection(self) -> str:
        return self._collection

    # ------------------------------------------------------------------
    # Client & collection setup
    # ------------------------------------------------------------------

    def _get_client(self):
        """Return a Qdrant client, raising ImportError if not installed."""
        if self._client is not None:
            return self._client
        try:
            from qdrant_client import QdrantClient  # type: ignore
        except ImportError as exc:
            raise ImportError(
                "qdrant-client is required. Install it with: pip install qdrant-client"
            ) from exc

        if self.url == ":memory:":
            self._client = QdrantClient(location=":memory:")
        else:
            self._client = QdrantClient(url=self.url)
        return self._client

    def ensure_collection(self) -> None:
        """
        Create the collection if missing, otherwise verify its dimension.

        Raises
        ------
        DimensionMismatchError
            If the existing collection was created with another vector size.
        """
        from qdrant_client.models import Distance, VectorParams  # type: ignore

        client = self._get_client()
        existing = [c.name for c in client.get_collections().collections]
        if self._collection not in existing:
            client.create_collection(
                collection_name=self._collection,
                vectors_config=VectorParams(
                    size=self.vector_size,
                    distance=Distance.COSINE,
                ),
            )
            logger.info("Created Qdrant collection: %s", self._collection)
            return

        info = client.get_collection(self._collection)
        current_size = getattr(info.config.params.vectors, "size", None)
        if current_size != self.vector_size:
            message = (
                f"Qdrant collection {self._collection} has dimension {current_size}, "
                f"expected {self.vector_size}. Please recreate the collection to continue."
            )
            logger.error(message)
            raise DimensionMismatchError(message)
        logger.debug("Qdrant collection already exists: %s", self._collection)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def upsert_entities(self, entities: Iterable[EnrichedEntity]) -> int:
        """
        Upsert one point per entity that carries an embedding.

        Returns
        -------
        int
            Number of points written.
        """
        from qdrant_client.models import PointStruct  # type: ignore

        points = []
        for entity in entities:
            if not entity.has_embedding():
                continue
            if len(entity.embedding) != self.vector_size:
                logger.warning(
                    "Skipping %s: embedding has %d dimensions, expected %d",
                    entity.id, len(entity.embedding), self.vector_size,
                )
                continue
            points.append(PointStruct(
                id=hash_entity_id(entity.id),
                vector=entity.embedding,
                payload=entity_payload(entity),
            ))

        if not points:
            logger.warning("No entities with embeddings to store in Qdrant")
            return 0

        client = self._get_client()
        total = len(points)
        for start in range(0, total, BATCH_SIZE):
            batch = points[start:start + BATCH_SIZE]
            client.upsert(collection_name=self._collection, points=batch, wait=True)
            logger.info("Qdrant upsert progress: %d/%d", min(start + len(batch), total), total)
        return total

    def delete_entities(self, entity_ids: Iterable[str]) -> int:
        """Delete the points of *entity_ids*; returns how many ids were submitted."""
        from qdrant_client.models import PointIdsList  # type: ignore

        point_ids = sorted({hash_entity_id(eid) for eid in entity_ids})
        if not point_ids:
            return 0
        client = self._get_client()
        for start in range(0, len(point_ids), BATCH_SIZE):
            client.delete(
                collection_name=self._collection,
                points_selector=PointIdsList(points=point_ids[start:start + BATCH_SIZE]),
                wait=True,
            )
        logger.debug("Deleted %d Qdrant points from %s", len(point_ids), self._collection)
        return len(point_ids)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query_vector: list[float],
        top_k: int = 10,
        filters: Optional[dict] = None,
    ) -> list[dict]:
        """
        Perform a cosine-similarity search.

        Parameters
        ----------
        query_vector:
            The embedded query vector.
        top_k:
            Number of results to return.
        filters:
            Optional exact-match payload filters.  Supported keys: ``"type"``,
            ``"path"``, ``"architecturalRole"``.

        Returns
        -------
        list[dict]
            Each dict has ``id``, ``score`` and ``payload``.
        """
        from qdrant_client.models import FieldCondition, Filter, MatchValue  # type: ignore

        client = self._get_client()

        qdrant_filter: Optional[object] = None
        if filters:
            conditions = [
                FieldCondition(key=key, match=MatchValue(value=filters[key]))
                for key in ("type", "path", "architecturalRole")
                if filters.get(key)
            ]
            if conditions:
                qdrant_filter = Filter(must=conditions)

        results = client.query_points(
            collection_name=self._collection,
            query=query_vector,
            limit=top_k,
            query_filter=qdrant_filter,
            with_payload=True,
        )
        return [
            {"id": hit.id, "score": hit.score, "payload": hit.payload or {}}
            for hit in results.points
        ]

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def count(self) -> int:
        client = self._get_client()
        return client.count(collection_name=self._collection, exact=True).count

    def collection_info(self) -> Optional[dict]:
        """Name and point count, or None if the collection does not exist."""
        client = self._get_client()
        existing = [c.name for c in client.get_collections().collections]
        if self._collection not in existing:
            return None
        info = client.get_collection(self._collection)
        return {"name": self._collection, "points_count": info.points_count}

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
