import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List

import voyageai
from voyageai.error import VoyageError

from docchat.errors import TransientError, bounded

logger = logging.getLogger(__name__)


class EmbeddingClient(ABC):
    """Maps a batch of texts to fixed-width vectors, in input order."""

    dimension: int

    @abstractmethod
    async def embed_documents(self, texts: List[str]) -> List[List[float]]: ...

    @abstractmethod
    async def embed_query(self, text: str) -> List[float]: ...


class VoyageEmbeddingClient(EmbeddingClient):
    def __init__(
        self,
        api_key: str,
        model: str = "voyage-3-large",
        dimension: int = 1024,
        batch_size: int = 128,
        timeout: float = 120.0,
    ):
        self.model = model
        self.dimension = dimension
        self.batch_size = batch_size
        self.timeout = timeout
        # Retries belong to the job queue, not the client
        self.client = voyageai.Client(api_key=api_key, max_retries=0, timeout=timeout)

    def _embed(self, texts: List[str], input_type: str) -> List[List[float]]:
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            vectors.extend(self.client.embed(batch, model=self.model, input_type=input_type).embeddings)
        return vectors

    async def _run(self, texts: List[str], input_type: str) -> List[List[float]]:
        try:
            return await bounded(
                asyncio.to_thread(self._embed, texts, input_type),
                self.timeout,
                f"embed {len(texts)} text(s)",
            )
        except VoyageError as e:
            raise TransientError(f"Embedding request failed: {e}") from e

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        return await self._run(texts, "document")

    async def embed_query(self, text: str) -> List[float]:
        return (await self._run([text], "query"))[0]
