"""
Dependency wait — blocks until the embedding service, Qdrant and the graph
store answer, so a build started right after container boot does not fail
on its first network call.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests

from .errors import KGBuilderError

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 30
DEFAULT_DELAY = 10.0


@dataclass
class Dependency:
    name: str
    check: Callable[[], None]


def check_http(url: str, timeout: float = 2.0) -> None:
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()


def _check_neo4j(config) -> None:
    from .stores.graph_store import Neo4jGraphStore

    store = Neo4jGraphStore(config.NEO4J_URL, config.NEO4J_USER, config.NEO4J_PASSWORD)
    try:
        store.ping()
    finally:
        store.close()


def build_dependencies(config) -> list[Dependency]:
    """The remote services the configured pipeline talks to."""
    deps: list[Dependency] = []
    if config.EMBEDDING_PROVIDER == "tei":
        deps.append(Dependency("Embedding service", lambda: check_http(config.EMBEDDING_URL)))
    if config.QDRANT_URL != ":memory:":
        healthz = config.QDRANT_URL.rstrip("/") + "/healthz"
        deps.append(Dependency("Qdrant", lambda: check_http(healthz)))
    if config.GRAPH_BACKEND == "neo4j":
        deps.append(Dependency("Neo4j", lambda: _check_neo4j(config)))
    return deps


def wait_for_dependency(
    dep: Dependency,
    retries: int = DEFAULT_RETRIES,
    delay: float = DEFAULT_DELAY,
) -> None:
    """
    Poll *dep* until its check passes.

    Raises
    ------
    KGBuilderError
        If the dependency is still unreachable after *retries* attempts.
    """
    for attempt in range(1, retries + 1):
        try:
            dep.check()
            logger.info("[startup] %s available (attempt %d)", dep.name, attempt)
            return
        except Exception as exc:
            logger.warning(
                "[startup] Waiting for %s (attempt %d/%d): %s",
                dep.name, attempt, retries, exc,
            )
            if attempt == retries:
                raise KGBuilderError(
                    f"{dep.name} not reachable after {retries} attempts"
                ) from exc
            time.sleep(delay)


def wait_for_dependencies(
    config,
    retries: int = DEFAULT_RETRIES,
    delay: float = DEFAULT_DELAY,
) -> None:
    deps = build_dependencies(config)
    logger.info(
        "[startup] Waiting for dependencies: %s", ", ".join(d.name for d in deps) or "none"
    )
    for dep in deps:
        wait_for_dependency(dep, retries, delay)
    logger.info("[startup] All dependencies are reachable")
