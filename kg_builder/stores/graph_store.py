"""
Graph stores for enriched entities and their relationships.

Two backends implement the same surface:

* ``Neo4jGraphStore`` — the production store; nodes are ``:Entity`` keyed by
  ``(id, project)`` and edges carry the relationship type as their label.
* ``NetworkXGraphStore`` — an in-process ``MultiDiGraph`` persisted to a
  pickle file; used for local runs and tests.

Every read and write is scoped by project id.
"""

from __future__ import annotations

import json
import logging
import os
import pickle
from collections import defaultdict
from typing import Iterable, Optional

import networkx as nx

from ..models import EnrichedEntity, ParsedRelationship, RelationshipType, utc_now_iso

logger = logging.getLogger(__name__)

BATCH_SIZE = 100

INDEXED_PROPERTIES = ("id", "type", "path", "project")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def filter_valid_relationships(
    relationships: Iterable[ParsedRelationship],
) -> list[ParsedRelationship]:
    """Drop relationships whose type is outside the closed edge vocabulary."""
    valid: list[ParsedRelationship] = []
    for rel in relationships:
        if RelationshipType.is_valid(rel.type):
            valid.append(rel)
        else:
            logger.warning("Skipping relationship %s: unknown type %r", rel.id, rel.type)
    return valid


def entity_properties(entity: EnrichedEntity) -> dict:
    """Node properties written for *entity* (``metadata`` as a JSON string)."""
    return {
        "id": entity.id,
        "type": entity.type,
        "name": entity.name,
        "path": entity.path,
        "semanticDescription": entity.semantic_description,
        "purpose": entity.purpose,
        "patterns": entity.patterns or [],
        "architecturalRole": entity.architectural_role,
        "complexity": entity.complexity,
        "metadata": json.dumps(entity.metadata, default=str),
    }


def _batches(items: list, size: int = BATCH_SIZE):
    for start in range(0, len(items), size):
        yield start, items[start:start + size]


class GraphStore:
    """Interface shared by the graph backends."""

    def initialize(self) -> None:
        raise NotImplementedError

    def upsert_entities(self, project_id: str, entities: list[EnrichedEntity]) -> int:
        raise NotImplementedError

    def upsert_relationships(
        self, project_id: str, relationships: list[ParsedRelationship]
    ) -> int:
        raise NotImplementedError

    def prune_stale(
        self,
        project_id: str,
        current_ids: Iterable[str],
        paths: Optional[Iterable[str]] = None,
    ) -> list[str]:
        """
        Delete project nodes whose id is not in *current_ids*.

        Parameters
        ----------
        project_id:
            Project scope.
        current_ids:
            Ids of the entities produced by this build.
        paths:
            When given, only nodes whose ``path`` is in this collection are
            candidates for deletion.

        Returns
        -------
        list[str]
            Ids of the deleted nodes.
        """
        raise NotImplementedError

    def stats(self, project_id: str) -> dict:
        raise NotImplementedError

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Neo4j
# ---------------------------------------------------------------------------

_UPSERT_ENTITIES = """
UNWIND $rows AS row
MERGE (e:Entity {id: row.id, project: $projectId})
SET e.type = row.type,
    e.name = row.name,
    e.path = row.path,
    e.semanticDescription = row.semanticDescription,
    e.purpose = row.purpose,
    e.patterns = row.patterns,
    e.architecturalRole = row.architecturalRole,
    e.complexity = row.complexity,
    e.metadata = row.metadata,
    e.updatedAt = datetime()
"""

# Label is interpolated; callers pass only validated RelationshipType values.
_UPSERT_RELATIONSHIPS = """
UNWIND $rows AS row
MATCH (source:Entity {{id: row.sourceId, project: $projectId}})
MATCH (target:Entity {{id: row.targetId, project: $projectId}})
MERGE (source)-[r:`{rel_type}`]->(target)
SET r.properties = row.properties,
    r.project = $projectId,
    r.updatedAt = datetime()
RETURN count(r) AS created
"""

_PRUNE = """
MATCH (e:Entity)
WHERE e.project = $projectId AND NOT e.id IN $currentIds {path_clause}
WITH e, e.id AS id
DETACH DELETE e
RETURN id
"""


class Neo4jGraphStore(GraphStore):
    """
    Neo4j-backed graph store.

    Parameters
    ----------
    url, user, password:
        Bolt connection settings.
    driver:
        Pre-built ``neo4j.Driver`` (tests).
    """

    def __init__(
        self,
        url: str,
        user: str,
        password: str,
        driver=None,
    ) -> None:
        self.url = url
        self._auth = (user, password)
        self._driver = driver

    def _get_driver(self):
        """Return the neo4j driver, raising ImportError if not installed."""
        if self._driver is not None:
            return self._driver
        try:
            from neo4j import GraphDatabase  # type: ignore
        except ImportError as exc:
            raise ImportError(
                "neo4j is required. Install it with: pip install neo4j"
            ) from exc
        self._driver = GraphDatabase.driver(self.url, auth=self._auth)
        return self._driver

    def initialize(self) -> None:
        driver = self._get_driver()
        for prop in INDEXED_PROPERTIES:
            driver.execute_query(f"CREATE INDEX IF NOT EXISTS FOR (n:Entity) ON (n.{prop})")
        logger.info("Neo4j indexes created")

    def upsert_entities(self, project_id: str, entities: list[EnrichedEntity]) -> int:
        driver = self._get_driver()
        total = len(entities)
        logger.info("Populating %d entities in Neo4j", total)
        for start, batch in _batches(entities):
            rows = [entity_properties(e) for e in batch]
            driver.execute_query(_UPSERT_ENTITIES, {"rows": rows, "projectId": project_id})
            logger.info("Neo4j entity load: %d/%d", start + len(batch), total)
        return total

    def upsert_relationships(
        self, project_id: str, relationships: list[ParsedRelationship]
    ) -> int:
        valid = filter_valid_relationships(relationships)
        total = len(valid)
        logger.info("Populating %d relationships in Neo4j", total)

        def _write_batch(tx, batch: list[ParsedRelationship]) -> int:
            by_type: dict[str, list[dict]] = defaultdict(list)
            for rel in batch:
                by_type[rel.type].append({
                    "sourceId": rel.source,
                    "targetId": rel.target,
                    "properties": json.dumps(rel.properties, default=str),
                })
            created = 0
            for rel_type, rows in by_type.items():
                record = tx.run(
                    _UPSERT_RELATIONSHIPS.format(rel_type=rel_type),
                    rows=rows,
                    projectId=project_id,
                ).single()
                created += record["created"] if record else 0
            return created

        created = 0
        with self._get_driver().session() as session:
            for start, batch in _batches(valid):
                created += session.execute_write(_write_batch, batch)
                logger.info("Neo4j relationship load: %d/%d", start + len(batch), total)
        return created

    def prune_stale(
        self,
        project_id: str,
        current_ids: Iterable[str],
        paths: Optional[Iterable[str]] = None,
    ) -> list[str]:
        params = {"projectId": project_id, "currentIds": list(current_ids)}
        path_clause = ""
        if paths is not None:
            params["paths"] = list(paths)
            path_clause = "AND e.path IN $paths"
        records, _, _ = self._get_driver().execute_query(
            _PRUNE.format(path_clause=path_clause), params
        )
        deleted = [record["id"] for record in records]
        logger.info("Cleared %d stale entities from Neo4j", len(deleted))
        return deleted

    def stats(self, project_id: str) -> dict:
        driver = self._get_driver()
        nodes, _, _ = driver.execute_query(
            "MATCH (e:Entity {project: $projectId}) RETURN count(e) AS n",
            {"projectId": project_id},
        )
        edges, _, _ = driver.execute_query(
            "MATCH (:Entity {project: $projectId})-[r {project: $projectId}]->() "
            "RETURN count(r) AS n",
            {"projectId": project_id},
        )
        return {"nodes": nodes[0]["n"], "relationships": edges[0]["n"]}

    def ping(self) -> None:
        """Raise if the server is unreachable."""
        self._get_driver().verify_connectivity()

    def close(self) -> None:
        if self._driver is not None:
            self._driver.close()
            self._driver = None


# ---------------------------------------------------------------------------
# NetworkX
# ---------------------------------------------------------------------------

class NetworkXGraphStore(GraphStore):
    """
    Directed multi-graph store with Neo4j-equivalent merge semantics.

    Nodes are keyed by ``(project, id)``; parallel edges are keyed by
    relationship type, so re-upserting an edge overwrites it.

    Parameters
    ----------
    path:
        Pickle file to load from and save to.  None keeps the graph in memory.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()
        if path and os.path.exists(path):
            with open(path, "rb") as fh:
                self._g = pickle.load(fh)
            logger.debug("Loaded graph (%d nodes) from %s", self._g.number_of_nodes(), path)

    def initialize(self) -> None:
        # Node lookups are dictionary keyed; nothing to index.
        pass

    def upsert_entities(self, project_id: str, entities: list[EnrichedEntity]) -> int:
        total = len(entities)
        for start, batch in _batches(entities):
            for entity in batch:
                key = (project_id, entity.id)
                attrs = entity_properties(entity)
                attrs["project"] = project_id
                attrs["updatedAt"] = utc_now_iso()
                if self._g.has_node(key):
                    self._g.nodes[key].update(attrs)
                else:
                    self._g.add_node(key, **attrs)
            logger.info("Graph entity load: %d/%d", start + len(batch), total)
        return total

    def upsert_relationships(
        self, project_id: str, relationships: list[ParsedRelationship]
    ) -> int:
        created = 0
        for rel in filter_valid_relationships(relationships):
            src, dst = (project_id, rel.source), (project_id, rel.target)
            # MATCH semantics: both endpoints must already exist
            if not self._g.has_node(src) or not self._g.has_node(dst):
                continue
            self._g.add_edge(
                src, dst, key=rel.type,
                type=rel.type,
                properties=json.dumps(rel.properties, default=str),
                project=project_id,
                updatedAt=utc_now_iso(),
            )
            created += 1
        return created

    def prune_stale(
        self,
        project_id: str,
        current_ids: Iterable[str],
        paths: Optional[Iterable[str]] = None,
    ) -> list[str]:
        keep = set(current_ids)
        scope = set(paths) if paths is not None else None
        doomed = [
            (proj, eid)
            for (proj, eid), attrs in self._g.nodes(data=True)
            if proj == project_id
            and eid not in keep
            and (scope is None or attrs.get("path") in scope)
        ]
        self._g.remove_nodes_from(doomed)
        deleted = [eid for _, eid in doomed]
        logger.info("Cleared %d stale entities from graph", len(deleted))
        return deleted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, project_id: str, entity_id: str) -> Optional[dict]:
        key = (project_id, entity_id)
        if not self._g.has_node(key):
            return None
        return dict(self._g.nodes[key])

    def node_ids(self, project_id: str) -> set[str]:
        return {eid for proj, eid in self._g.nodes if proj == project_id}

    def relationships(self, project_id: str) -> list[tuple[str, str, str]]:
        """``(source_id, type, target_id)`` triples for *project_id*."""
        return [
            (src[1], key, dst[1])
            for src, dst, key in self._g.edges(keys=True)
            if src[0] == project_id
        ]

    def stats(self, project_id: str) -> dict:
        return {
            "nodes": len(self.node_ids(project_id)),
            "relationships": len(self.relationships(project_id)),
        }

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def save(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        with open(self.path, "wb") as fh:
            pickle.dump(self._g, fh, protocol=pickle.HIGHEST_PROTOCOL)
        logger.debug("Saved graph (%d nodes, %d edges) to %s",
                     self._g.number_of_nodes(), self._g.number_of_edges(), self.path)

    def close(self) -> None:
        self.save()


def create_graph_store(config) -> GraphStore:
    """Build the graph store selected by ``config.GRAPH_BACKEND``."""
    backend = config.GRAPH_BACKEND
    if backend == "neo4j":
        return Neo4jGraphStore(config.NEO4J_URL, config.NEO4J_USER, config.NEO4J_PASSWORD)
    if backend == "networkx":
        return NetworkXGraphStore(os.path.join(config.STAGING_PATH, "graph", "graph.pkl"))
    raise ValueError(f"Unknown graph backend: {backend}")
