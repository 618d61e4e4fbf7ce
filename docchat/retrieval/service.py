import logging
from typing import Any, Dict, List

from pydantic import BaseModel

from docchat.services.embeddings import EmbeddingClient
from docchat.services.vector_index import VectorIndex

logger = logging.getLogger(__name__)

class SearchResult(BaseModel):
    chunk_id: str
    document_id: str
    content: str
    similarity: float
    metadata: Dict[str, Any]

class RetrievalService:
    """Top-k chunk search scoped to one conversation's namespace."""

    def __init__(self, embedder: EmbeddingClient, vector_index: VectorIndex, top_k: int = 3):
        self.embedder = embedder
        self.vector_index = vector_index
        self.top_k = top_k

    async def search(self, conversation_id: str, query: str) -> List[SearchResult]:
        query_vec = await self.embedder.embed_query(query)
        matches = await self.vector_index.query(conversation_id, query_vec, self.top_k)

        results = [
            SearchResult(
                chunk_id=m.id,
                document_id=m.metadata.get("documentId", ""),
                content=m.metadata.get("text", ""),
                similarity=m.score,
                metadata=m.metadata,
            )
            for m in matches
        ]
        if results:
            logger.info(f"[{conversation_id}] Retrieved {len(results)} chunk(s), top score {results[0].similarity:.3f}")
        else:
            logger.info(f"[{conversation_id}] Retrieved no chunks")
        return results

    @staticmethod
    def build_context(results: List[SearchResult]) -> str:
        """Chunk texts, best match first, separated by blank lines."""
        return "\n\n".join(r.content for r in results)
