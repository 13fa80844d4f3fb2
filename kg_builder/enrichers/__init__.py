"""Semantic enrichment: chat-model summaries and embeddings."""

from .code import CodeEnricher, create_chat_client
from .doc import DocEnricher
from .embedding import Embedder, OpenAIEmbedder, TEIEmbedder, create_embedder
from .json_extract import extract_json_object

__all__ = [
    "CodeEnricher",
    "DocEnricher",
    "Embedder",
    "OpenAIEmbedder",
    "TEIEmbedder",
    "create_chat_client",
    "create_embedder",
    "extract_json_object",
]
