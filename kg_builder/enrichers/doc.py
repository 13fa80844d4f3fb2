"""Document / asset enricher — extractive summary plus an embedding."""

from __future__ import annotations

import logging
import math

from ..models import EnrichedEntity, EntityType, ParsedEntity
from .embedding import Embedder

logger = logging.getLogger(__name__)

DOC_EMBED_CHARS = 2048
SUMMARY_LINES = 5
SUMMARY_CHARS = 400


def build_summary(text: str) -> str:
    """Join the first five non-blank lines, capped at 400 characters."""
    if not text:
        return "No content available."
    lines = [line.strip() for line in text.replace("\r\n", "\n").split("\n")]
    first = " ".join([line for line in lines if line][:SUMMARY_LINES])
    if len(first) > SUMMARY_CHARS:
        return first[:SUMMARY_CHARS - 3] + "..."
    return first or "Summary not available."


class DocEnricher:
    def __init__(self, embedder: Embedder) -> None:
        self.embedder = embedder

    def enrich(self, entity: ParsedEntity) -> EnrichedEntity:
        if entity.type not in (EntityType.DOCUMENT, EntityType.ASSET):
            return EnrichedEntity.from_parsed(entity)

        text = entity.content or ""
        summary = build_summary(text)
        try:
            embedding = self.embedder.embed(text[:DOC_EMBED_CHARS])
        except Exception as exc:
            logger.warning("Failed to embed document %s: %s", entity.id, exc)
            embedding = []
        return EnrichedEntity.from_parsed(
            entity,
            semantic_description=summary,
            purpose=summary,
            embedding=embedding or None,
        )

    def enrich_batch(self, entities: list[ParsedEntity]) -> list[EnrichedEntity]:
        results: list[EnrichedEntity] = []
        total = len(entities)
        step = max(1, math.ceil(total / 5))
        for idx, entity in enumerate(entities):
            results.append(self.enrich(entity))
            processed = idx + 1
            if processed % step == 0 or processed == total:
                logger.info("Document enrichment progress: %d/%d", processed, total)
        return results
