"""Embedding provider backed by the OpenAI embeddings API."""

import logging
from typing import List, Optional

from openai import AsyncOpenAI

from docingest.core.config import Settings, settings as default_settings
from docingest.core.exceptions import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Turns chunk texts into vectors with one API request per call."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        """
        Initialize the embedding service.

        Args:
            config: Settings providing model name, dimensions and API key.
            client: Pre-built OpenAI client, mainly for tests.
        """
        config = config or default_settings
        self.client = client or AsyncOpenAI(
            api_key=config.openai_api_key,
            timeout=config.embedding_timeout_seconds,
        )
        self.model = config.embedding_model
        self.dimensions = config.embedding_dimensions

    async def close(self) -> None:
        await self.client.close()

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts in a single request.

        Args:
            texts: Texts to embed, already validated by the caller.

        Returns:
            One vector per text, in request order.

        Raises:
            EmbeddingError: If the API call fails.
        """
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=texts,
                dimensions=self.dimensions,
            )
        except Exception as e:
            raise EmbeddingError(f"Failed to generate embeddings: {str(e)}") from e

        if response.usage is not None:
            logger.debug(
                f"Embedded {len(texts)} texts with {self.model}: "
                f"{response.usage.total_tokens} tokens"
            )
        # The API may return items out of order; index is authoritative.
        return [item.embedding for item in sorted(response.data, key=lambda item: item.index)]

    async def generate_embedding(self, text: str) -> List[float]:
        vectors = await self.generate_embeddings([text])
        return vectors[0]
