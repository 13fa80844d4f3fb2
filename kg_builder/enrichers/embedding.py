"""
Embedding providers.

Two backends share one retry policy:

* ``TEIEmbedder`` — a text-embeddings-inference style HTTP service
  (``POST {url}/embed`` with ``{"inputs": text}``, answering ``[[...]]``).
* ``OpenAIEmbedder`` — the OpenAI Embeddings API.

A provider that keeps failing degrades to "no embedding" (an empty list)
for that one text; it never raises into the enrichment batch.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import requests

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


class Embedder:
    """Base class: subclasses implement :meth:`_embed` for a single text."""

    name = "embedder"

    def __init__(self, max_retries: int = MAX_RETRIES, retry_delay: float = 1.0) -> None:
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    def _embed(self, text: str) -> list[float]:
        raise NotImplementedError

    def embed(self, text: str) -> list[float]:
        """
        Embed *text*, retrying with exponential back-off.

        Returns
        -------
        list[float]
            The vector, or ``[]`` when *text* is empty or every attempt failed.
        """
        if not text:
            return []
        for attempt in range(1, self.max_retries + 1):
            try:
                vector = self._embed(text)
                return [float(v) for v in vector]
            except Exception as exc:
                if attempt < self.max_retries:
                    wait = self.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "%s error (attempt %d/%d): %s, retrying in %.1fs",
                        self.name, attempt, self.max_retries, exc, wait,
                    )
                    if wait > 0:
                        time.sleep(wait)
                else:
                    logger.error(
                        "%s failed after %d attempts: %s",
                        self.name, self.max_retries, exc,
                    )
        return []


class TEIEmbedder(Embedder):
    """HTTP embedding service client."""

    name = "TEI embedding"

    def __init__(
        self,
        url: str,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _embed(self, text: str) -> list[float]:
        response = self._session.post(
            f"{self.url}/embed",
            json={"inputs": text},
            timeout=(10, self.timeout),
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list) or not data:
            raise ValueError("embedding service returned an empty payload")
        first = data[0]
        # Single-input requests come back as [[...]]; some servers answer [...].
        return first if isinstance(first, list) else data


def _get_openai_client(api_key: str, base_url: Optional[str] = None):
    """Return an openai.OpenAI client, raising ImportError if not installed."""
    try:
        import openai  # type: ignore
    except ImportError as exc:
        raise ImportError(
            "openai package is required for OpenAI enrichment. "
            "Install it with: pip install openai"
        ) from exc
    if not api_key:
        raise EnvironmentError("OPENAI_API_KEY is not set.")
    return openai.OpenAI(api_key=api_key, base_url=base_url)


class OpenAIEmbedder(Embedder):
    """OpenAI Embeddings API client."""

    name = "OpenAI embedding"

    def __init__(
        self,
        client,
        model: str,
        dimensions: Optional[int] = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.client = client
        self.model = model
        self.dimensions = dimensions

    def _embed(self, text: str) -> list[float]:
        params = {"model": self.model, "input": text}
        if self.dimensions:
            params["dimensions"] = self.dimensions
        response = self.client.embeddings.create(**params)
        return response.data[0].embedding


def create_embedder(config) -> Embedder:
    """Build the embedder selected by ``config.EMBEDDING_PROVIDER``."""
    provider = config.EMBEDDING_PROVIDER
    if provider == "openai":
        client = _get_openai_client(config.OPENAI_API_KEY, config.OPENAI_BASE_URL)
        return OpenAIEmbedder(client, config.EMBEDDING_MODEL, dimensions=config.VECTOR_SIZE)
    if provider == "tei":
        return TEIEmbedder(config.EMBEDDING_URL)
    raise ValueError(f"Unknown embedding provider: {provider}")
