"""
Enrich stage — adds semantic metadata and embeddings to the parse artifact.

Code and document entities are enriched concurrently; every parsed entity
appears in the output, enriched or not.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor

from ..enrichers import CodeEnricher, DocEnricher
from ..models import BuildConfig, EnrichedEntity, EnrichOutput, EntityType, ParseOutput, utc_now_iso
from .staging import read_artifact, write_artifact

logger = logging.getLogger(__name__)

STAGE_NAME = "enrich"

CODE_TYPES = frozenset({
    EntityType.CLASS, EntityType.FUNCTION, EntityType.COMPONENT, EntityType.SYSTEM,
})
DOC_TYPES = frozenset({EntityType.DOCUMENT, EntityType.ASSET})

# Parse metadata that Populate needs for scoped pruning
_FORWARDED_KEYS = ("commit", "mode", "parsedFiles", "deletedFiles")


class EnrichStage:
    def __init__(self, code_enricher: CodeEnricher, doc_enricher: DocEnricher) -> None:
        self.code_enricher = code_enricher
        self.doc_enricher = doc_enricher

    def execute(self, config: BuildConfig) -> EnrichOutput:
        logger.info("Starting enrich stage")
        start_time = time.time()

        parse_output = ParseOutput.from_dict(read_artifact(config.staging_path, "parse"))

        code_entities = [e for e in parse_output.entities if e.type in CODE_TYPES]
        doc_entities = [e for e in parse_output.entities if e.type in DOC_TYPES]
        logger.info(
            "Enriching %d code entities and %d documentation/assets (%d total)",
            len(code_entities), len(doc_entities), len(parse_output.entities),
        )

        with ThreadPoolExecutor(max_workers=2) as pool:
            code_future = pool.submit(self.code_enricher.enrich_batch, code_entities)
            doc_future = pool.submit(self.doc_enricher.enrich_batch, doc_entities)
            code_enriched = code_future.result()
            doc_enriched = doc_future.result()

        enriched_by_id = {e.id: e for e in code_enriched + doc_enriched}
        entities = [
            enriched_by_id.get(e.id) or EnrichedEntity.from_parsed(e)
            for e in parse_output.entities
        ]

        enriched_count = len(code_enriched) + len(doc_enriched)
        metadata = {
            "timestamp": utc_now_iso(),
            "entitiesEnriched": enriched_count,
        }
        for key in _FORWARDED_KEYS:
            if key in parse_output.metadata:
                metadata[key] = parse_output.metadata[key]

        output = EnrichOutput(
            entities=entities,
            relationships=parse_output.relationships,
            metadata=metadata,
        )
        write_artifact(config.staging_path, STAGE_NAME, output.to_dict())

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Enrich stage complete: %d entities enriched in %dms", enriched_count, elapsed_ms
        )
        return output
