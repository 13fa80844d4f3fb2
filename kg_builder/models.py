"""
Core data model for the knowledge-graph build pipeline.

Entities and relationships flow through three stages (parse → enrich →
populate) as JSON artifacts on disk.  The dataclasses here serialise to and
from the camelCase layout used by those artifacts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------

class EntityType:
    FILE = "file"
    CLASS = "class"
    FUNCTION = "function"
    COMPONENT = "component"
    SYSTEM = "system"
    DOCUMENT = "document"
    PATTERN = "pattern"
    DECISION = "decision"
    ASSET = "asset"

    ALL = frozenset({
        FILE, CLASS, FUNCTION, COMPONENT, SYSTEM,
        DOCUMENT, PATTERN, DECISION, ASSET,
    })


class RelationshipType:
    IMPORTS = "IMPORTS"
    DEFINES = "DEFINES"
    EXTENDS = "EXTENDS"
    SUBSCRIBES_TO = "SUBSCRIBES_TO"
    EMITS = "EMITS"
    IMPLEMENTS_PATTERN = "IMPLEMENTS_PATTERN"
    DOCUMENTS = "DOCUMENTS"
    LINKS_TO = "LINKS_TO"
    RELATES_TO = "RELATES_TO"
    DEPENDS_ON_PACKAGE = "DEPENDS_ON_PACKAGE"

    ALL = frozenset({
        IMPORTS, DEFINES, EXTENDS, SUBSCRIBES_TO, EMITS,
        IMPLEMENTS_PATTERN, DOCUMENTS, LINKS_TO, RELATES_TO,
        DEPENDS_ON_PACKAGE,
    })

    @classmethod
    def is_valid(cls, value: str) -> bool:
        return value in cls.ALL


MODES = ("incremental", "full")
STAGES = ("all", "parse", "enrich", "populate")


# ---------------------------------------------------------------------------
# Id helpers
# ---------------------------------------------------------------------------

def file_id(path: str) -> str:
    return f"file:{path}"


def class_id(path: str, name: str) -> str:
    return f"class:{path}:{name}"


def function_id(path: str, name: str) -> str:
    return f"function:{path}:{name}"


def doc_id(path: str) -> str:
    return f"doc:{path}"


def asset_id(path: str) -> str:
    return f"asset:{path}"


def relationship_id(source: str, rel_type: str, target: str) -> str:
    """Stable id for an edge, derived only from its endpoints and type."""
    return f"{source}-{rel_type.lower()}-{target}"


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


# ---------------------------------------------------------------------------
# Entities and relationships
# ---------------------------------------------------------------------------

@dataclass
class SourceLocation:
    file: str
    line: int
    column: int

    def to_dict(self) -> dict:
        return {"file": self.file, "line": self.line, "column": self.column}

    @classmethod
    def from_dict(cls, data: dict) -> "SourceLocation":
        return cls(
            file=data.get("file", ""),
            line=int(data.get("line", 0)),
            column=int(data.get("column", 0)),
        )


@dataclass
class ParsedEntity:
    """A discrete artifact extracted from a single source file."""
    id: str
    type: str
    name: str
    path: str
    content: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    source_location: Optional[SourceLocation] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "path": self.path,
            "metadata": self.metadata,
        }
        if self.content is not None:
            data["content"] = self.content
        if self.source_location is not None:
            data["sourceLocation"] = self.source_location.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedEntity":
        loc = data.get("sourceLocation")
        return cls(
            id=data["id"],
            type=data["type"],
            name=data.get("name", ""),
            path=data.get("path", ""),
            content=data.get("content"),
            metadata=data.get("metadata") or {},
            source_location=SourceLocation.from_dict(loc) if loc else None,
        )


_ENRICHMENT_KEYS = (
    ("semantic_description", "semanticDescription"),
    ("purpose", "purpose"),
    ("patterns", "patterns"),
    ("architectural_role", "architecturalRole"),
    ("complexity", "complexity"),
    ("embedding", "embedding"),
)


@dataclass
class EnrichedEntity(ParsedEntity):
    """A :class:`ParsedEntity` plus the optional semantic layer."""
    semantic_description: Optional[str] = None
    purpose: Optional[str] = None
    patterns: Optional[list[str]] = None
    architectural_role: Optional[str] = None
    complexity: Optional[int] = None
    embedding: Optional[list[float]] = None

    @classmethod
    def from_parsed(cls, entity: ParsedEntity, **enrichment: Any) -> "EnrichedEntity":
        """Copy *entity* into a new enriched instance; the input is untouched."""
        return cls(
            id=entity.id,
            type=entity.type,
            name=entity.name,
            path=entity.path,
            content=entity.content,
            metadata=dict(entity.metadata),
            source_location=entity.source_location,
            **enrichment,
        )

    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def to_dict(self) -> dict:
        data = super().to_dict()
        for attr, key in _ENRICHMENT_KEYS:
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EnrichedEntity":
        base = ParsedEntity.from_dict(data)
        extra = {attr: data.get(key) for attr, key in _ENRICHMENT_KEYS}
        return cls.from_parsed(base, **extra)


@dataclass
class ParsedRelationship:
    """A directed, typed edge between two entity ids."""
    id: str
    type: str
    source: str
    target: str
    properties: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        source: str,
        rel_type: str,
        target: str,
        properties: Optional[dict[str, Any]] = None,
    ) -> "ParsedRelationship":
        return cls(
            id=relationship_id(source, rel_type, target),
            type=rel_type,
            source=source,
            target=target,
            properties=properties or {},
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "target": self.target,
            "properties": self.properties,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedRelationship":
        return cls(
            id=data["id"],
            type=data["type"],
            source=data["source"],
            target=data["target"],
            properties=data.get("properties") or {},
        )


@dataclass
class ParseResult:
    """Entities and relationships produced by parsing one file."""
    entities: list[ParsedEntity] = field(default_factory=list)
    relationships: list[ParsedRelationship] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Stage artifacts
# ---------------------------------------------------------------------------

@dataclass
class ParseOutput:
    entities: list[ParsedEntity] = field(default_factory=list)
    relationships: list[ParsedRelationship] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParseOutput":
        return cls(
            entities=[ParsedEntity.from_dict(e) for e in data.get("entities", [])],
            relationships=[
                ParsedRelationship.from_dict(r) for r in data.get("relationships", [])
            ],
            metadata=data.get("metadata") or {},
        )


@dataclass
class EnrichOutput:
    entities: list[EnrichedEntity] = field(default_factory=list)
    relationships: list[ParsedRelationship] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EnrichOutput":
        return cls(
            entities=[EnrichedEntity.from_dict(e) for e in data.get("entities", [])],
            relationships=[
                ParsedRelationship.from_dict(r) for r in data.get("relationships", [])
            ],
            metadata=data.get("metadata") or {},
        )


# ---------------------------------------------------------------------------
# Build configuration and run bookkeeping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BuildConfig:
    """Immutable per-build settings shared by all stages."""
    repo_path: str
    staging_path: str
    mode: str
    project_id: str
    base_commit: Optional[str] = None


@dataclass
class BuildRequest:
    mode: str = "incremental"
    stage: str = "all"
    base_commit: Optional[str] = None
    repo_url: Optional[str] = None
    branch: Optional[str] = None
    project: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"mode": self.mode, "stage": self.stage}
        for attr, key in (
            ("base_commit", "baseCommit"),
            ("repo_url", "repoUrl"),
            ("branch", "branch"),
            ("project", "project"),
        ):
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data


@dataclass
class BuildStageSummary:
    stage: str
    duration_ms: int
    entities_processed: int
    relationships_processed: int
    metadata: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "stage": self.stage,
            "durationMs": self.duration_ms,
            "entitiesProcessed": self.entities_processed,
            "relationshipsProcessed": self.relationships_processed,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data


@dataclass
class BuildRunSummary:
    request: BuildRequest
    started_at: str
    finished_at: str = ""
    success: bool = True
    stages: list[BuildStageSummary] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "request": self.request.to_dict(),
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "success": self.success,
            "stages": [s.to_dict() for s in self.stages],
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BuildStatus:
    running: bool
    current: Optional[dict[str, Any]] = None
    last_run: Optional[BuildRunSummary] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"running": self.running}
        if self.current is not None:
            data["current"] = {
                "request": self.current["request"].to_dict(),
                "startedAt": self.current["started_at"],
            }
        if self.last_run is not None:
            data["lastRun"] = self.last_run.to_dict()
        return data
