"""Structured asset parser (JSON and YAML files)."""

from __future__ import annotations

import json
import logging
import os

import yaml

from ..models import (
    EntityType,
    ParsedEntity,
    ParsedRelationship,
    ParseResult,
    RelationshipType,
    asset_id,
)

logger = logging.getLogger(__name__)

ASSET_EXTENSIONS: frozenset[str] = frozenset({".json", ".yml", ".yaml"})

ASSET_CONTENT_CHARS = 1500
MAX_TOP_LEVEL_KEYS = 25


def _load(raw: str, ext: str):
    if ext == ".json":
        return json.loads(raw)
    return yaml.safe_load(raw)


def parse_asset(raw: str, rel_path: str) -> ParseResult:
    """Parse a JSON/YAML document.

    ``package.json`` manifests additionally yield one ``DEPENDS_ON_PACKAGE``
    edge per runtime or dev dependency.

    Raises
    ------
    ValueError
        For an unsupported extension or malformed JSON.
    yaml.YAMLError
        For malformed YAML.
    """
    ext = os.path.splitext(rel_path)[1].lower()
    if ext not in ASSET_EXTENSIONS:
        raise ValueError(f"Unsupported asset file: {rel_path}")

    parsed = _load(raw, ext)
    aid = asset_id(rel_path)
    result = ParseResult()

    top_level_keys = list(parsed)[:MAX_TOP_LEVEL_KEYS] if isinstance(parsed, dict) else []
    entity = ParsedEntity(
        id=aid,
        type=EntityType.ASSET,
        name=os.path.basename(rel_path),
        path=rel_path,
        content=raw[:ASSET_CONTENT_CHARS],
        metadata={
            "format": ext.lstrip("."),
            "topLevelKeys": [str(k) for k in top_level_keys],
            "size": len(raw),
        },
    )

    if os.path.basename(rel_path) == "package.json" and isinstance(parsed, dict):
        dependencies: dict = {}
        for section in ("dependencies", "devDependencies"):
            value = parsed.get(section)
            if isinstance(value, dict):
                dependencies.update(value)

        entity.metadata["package"] = {
            "name": parsed.get("name"),
            "version": parsed.get("version"),
            "dependenciesCount": len(dependencies),
        }
        for dep, version in dependencies.items():
            result.relationships.append(ParsedRelationship.create(
                aid,
                RelationshipType.DEPENDS_ON_PACKAGE,
                f"package:{dep}",
                {"version": version},
            ))

    result.entities.append(entity)
    return result


def parse_file(rel_path: str, repo_path: str) -> ParseResult:
    with open(os.path.join(repo_path, rel_path), encoding="utf-8") as fh:
        return parse_asset(fh.read(), rel_path)
