"""Query embedding client (OpenAI-compatible)."""

import logging

import openai

from koda.configs.system import EmbeddingConfig

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Embeds a single query text per call; no caching."""

    def __init__(self, client: openai.AsyncOpenAI, config: EmbeddingConfig) -> None:
        self._client = client
        self._config = config

    @property
    def model_name(self) -> str:
        return self._config.model_name

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for *text*."""
        logger.debug("Embedding %d chars with %s", len(text), self.model_name)
        response = await self._client.embeddings.create(
            input=text,
            model=self._config.model_name,
        )
        return response.data[0].embedding
