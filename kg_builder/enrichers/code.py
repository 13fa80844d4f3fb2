"""
Code enricher — semantic summaries from a chat model plus an embedding for
class / function / component / system entities.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from ..models import EnrichedEntity, ParsedEntity
from .embedding import Embedder, _get_openai_client
from .json_extract import extract_json_object

logger = logging.getLogger(__name__)

CODE_EMBED_CHARS = 512

SYSTEM_PROMPT = (
    "You are a knowledge-graph enrichment microservice. Return concise JSON "
    "summaries of code artifacts. Do not include prose, markdown, or explanations."
)

_USER_PROMPT = """Analyze this {type} and return JSON only.

Name: {name}
Code (may be truncated):
```
{content}
```

Metadata: {metadata}

Expected JSON schema:
{{
  "semanticDescription": "string",
  "purpose": "string",
  "patterns": ["string", "..."],
  "architecturalRole": "string",
  "complexity": number (1-10)
}}"""


def build_prompt(entity: ParsedEntity) -> str:
    return _USER_PROMPT.format(
        type=entity.type,
        name=entity.name,
        content=entity.content or "No content",
        metadata=json.dumps(entity.metadata or {}, indent=2, default=str),
    )


def normalize_semantic(raw: dict) -> dict[str, Any]:
    """Keep only well-typed semantic fields, mapped to EnrichedEntity attributes."""
    info: dict[str, Any] = {}
    for key, attr in (
        ("semanticDescription", "semantic_description"),
        ("purpose", "purpose"),
        ("architecturalRole", "architectural_role"),
    ):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            info[attr] = value.strip()

    patterns = raw.get("patterns")
    if isinstance(patterns, list):
        info["patterns"] = [str(p) for p in patterns if isinstance(p, (str, int, float))]

    complexity = raw.get("complexity")
    if isinstance(complexity, float) and complexity.is_integer():
        complexity = int(complexity)
    if isinstance(complexity, int) and not isinstance(complexity, bool) and 1 <= complexity <= 10:
        info["complexity"] = complexity
    return info


def create_chat_client(config):
    """OpenAI client for semantic enrichment, or None when no API key is set."""
    if not config.OPENAI_API_KEY:
        logger.warning(
            "OPENAI_API_KEY is not set; semantic enrichment will return empty metadata."
        )
        return None
    return _get_openai_client(config.OPENAI_API_KEY, config.OPENAI_BASE_URL)


class CodeEnricher:
    """
    Enrich code entities in fixed-size concurrent batches.

    Parameters
    ----------
    embedder:
        Embedding provider.
    client:
        ``openai.OpenAI`` client, or None to skip semantic enrichment.
    model:
        Chat model name.
    batch_size:
        Entities enriched concurrently per batch.
    batch_delay:
        Seconds to pause between batches.
    """

    def __init__(
        self,
        embedder: Embedder,
        client=None,
        model: str = "gpt-5",
        batch_size: int = 5,
        batch_delay: float = 1.0,
    ) -> None:
        self.embedder = embedder
        self.client = client
        self.model = model
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay

    def semantic_info(self, entity: ParsedEntity) -> dict[str, Any]:
        """Ask the chat model for a summary; any failure yields ``{}``."""
        if self.client is None:
            return {}
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(entity)},
                ],
                max_completion_tokens=1000,
                response_format={"type": "json_object"},
            )
            text = response.choices[0].message.content or ""
        except Exception as exc:
            logger.warning("Failed to get semantic info for %s: %s", entity.id, exc)
            return {}

        logger.debug("Semantic response for %s: %s", entity.id, text)
        raw = extract_json_object(text)
        if not raw:
            logger.warning("Semantic enrichment returned non-JSON payload for %s", entity.id)
            return {}
        return normalize_semantic(raw)

    def enrich_entity(self, entity: ParsedEntity) -> EnrichedEntity:
        try:
            text = f"{entity.name}\n{entity.content or ''}"[:CODE_EMBED_CHARS]
            embedding = self.embedder.embed(text)
            semantic = self.semantic_info(entity)
            return EnrichedEntity.from_parsed(
                entity, embedding=embedding or None, **semantic
            )
        except Exception as exc:
            logger.error("Error enriching entity %s: %s", entity.id, exc)
            return EnrichedEntity.from_parsed(entity)

    def enrich_batch(self, entities: list[ParsedEntity]) -> list[EnrichedEntity]:
        enriched: list[EnrichedEntity] = []
        total = len(entities)
        if total == 0:
            return enriched

        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for start in range(0, total, self.batch_size):
                batch = entities[start:start + self.batch_size]
                enriched.extend(pool.map(self.enrich_entity, batch))

                processed = min(start + self.batch_size, total)
                logger.info("Code enrichment progress: %d/%d", processed, total)
                if processed < total and self.batch_delay > 0:
                    time.sleep(self.batch_delay)
        return enriched
