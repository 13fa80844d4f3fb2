"""Graph and vector store adapters."""

from .graph_store import GraphStore, Neo4jGraphStore, NetworkXGraphStore, create_graph_store
from .vector_store import QdrantStore, hash_entity_id

__all__ = [
    "GraphStore",
    "Neo4jGraphStore",
    "NetworkXGraphStore",
    "QdrantStore",
    "create_graph_store",
    "hash_entity_id",
]
