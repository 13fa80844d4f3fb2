"""
Markdown document parser.

Splits optional YAML front-matter from the body and emits a single
``document`` entity plus the edges the document declares: inline code spans
that name a source file, relative links to other markdown files, and the
``relates_to`` / ``documents`` front-matter lists.
"""

from __future__ import annotations

import json
import logging
import os
import re

import yaml

from ..models import (
    EntityType,
    ParsedEntity,
    ParsedRelationship,
    ParseResult,
    RelationshipType,
    doc_id,
    file_id,
)

logger = logging.getLogger(__name__)

DOC_EXTENSIONS: frozenset[str] = frozenset({".md"})

DOCUMENT_CONTENT_CHARS = 2000

_FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_CODE_SPAN_RE = re.compile(r"`([^`]+\.(?:js|ts|jsx|tsx|py))`")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")


def split_front_matter(text: str) -> tuple[dict, str]:
    """Return ``(front_matter, body)``; front-matter is ``{}`` when absent.

    Values YAML loads as dates or timestamps are converted to strings so the
    result stays JSON-serializable. Raises ``yaml.YAMLError`` if the
    front-matter block is not valid YAML.
    """
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return {}, text
    data = yaml.safe_load(match.group(1))
    body = text[match.end():]
    if not isinstance(data, dict):
        return {}, body
    return json.loads(json.dumps(data, default=str)), body


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def parse_markdown(text: str, rel_path: str) -> ParseResult:
    """Parse markdown *text* located at *rel_path* (relative to the repo root)."""
    front_matter, body = split_front_matter(text)
    did = doc_id(rel_path)
    result = ParseResult()

    name = os.path.basename(rel_path)
    if name.endswith(".md"):
        name = name[:-3]

    result.entities.append(ParsedEntity(
        id=did,
        type=EntityType.DOCUMENT,
        name=name,
        path=rel_path,
        content=body[:DOCUMENT_CONTENT_CHARS],
        metadata={
            "frontmatter": front_matter,
            "wordCount": len(body.split()),
        },
    ))

    seen: set[str] = set()

    def add(rel_type: str, target: str, properties: dict | None = None) -> None:
        rel = ParsedRelationship.create(did, rel_type, target, properties)
        if rel.id not in seen:
            seen.add(rel.id)
            result.relationships.append(rel)

    for match in _CODE_SPAN_RE.finditer(body):
        add(RelationshipType.DOCUMENTS, file_id(match.group(1)))

    for match in _LINK_RE.finditer(body):
        link_text, href = match.group(1), match.group(2)
        if href.endswith(".md"):
            add(RelationshipType.LINKS_TO, doc_id(href), {"text": link_text})

    for item in _as_list(front_matter.get("relates_to")):
        add(RelationshipType.RELATES_TO, str(item))
    for item in _as_list(front_matter.get("documents")):
        add(RelationshipType.DOCUMENTS, str(item))

    logger.debug(
        "Parsed %s: %d entities, %d relationships",
        rel_path, len(result.entities), len(result.relationships),
    )
    return result


def parse_file(rel_path: str, repo_path: str) -> ParseResult:
    with open(os.path.join(repo_path, rel_path), encoding="utf-8") as fh:
        return parse_markdown(fh.read(), rel_path)
