from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Protocol, Sequence

import openai

from ..config import EmbeddingSettings, settings
from .metrics import AI_REQUEST_DURATION

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when the embedding provider fails or returns an unusable response."""


class EmbeddingClient(Protocol):
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class OpenAIEmbeddingClient:
    provider = "openai"

    def __init__(self, config: EmbeddingSettings, client: openai.OpenAI | None = None) -> None:
        self.config = config
        self._client = client or openai.OpenAI(api_key=config.api_key)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if any(not text or not text.strip() for text in texts):
            raise EmbeddingError("Cannot generate embedding for empty text")

        vectors: list[list[float]] = []
        batch_size = max(1, self.config.batch_size)
        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            started = time.perf_counter()
            try:
                response = self._client.embeddings.create(
                    model=self.config.model,
                    input=batch,
                    dimensions=self.config.dimensions,
                )
            except openai.OpenAIError as exc:
                logger.error("embedding.request_failed model=%s batch=%s: %s", self.config.model, len(batch), exc)
                raise EmbeddingError(f"Embedding request failed: {exc}") from exc
            finally:
                AI_REQUEST_DURATION.labels(provider=self.provider, operation="embed").observe(
                    time.perf_counter() - started
                )

            data = sorted(response.data, key=lambda item: item.index)
            if len(data) != len(batch):
                raise EmbeddingError(f"Expected {len(batch)} embeddings, got {len(data)}")
            vectors.extend(list(item.embedding) for item in data)
        return vectors


@lru_cache(maxsize=1)
def get_embedding_client() -> EmbeddingClient:
    return OpenAIEmbeddingClient(settings.embedding)
