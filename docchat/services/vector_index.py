"""Namespaced nearest-neighbour store.

Records live in one MongoDB collection; every record carries its
``namespace`` (the conversation id) and every read or delete is
pre-filtered on it, so retrieval never crosses conversations. The Atlas
vector index must declare ``namespace`` and ``metadata.documentId`` as
filter fields.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pydantic import BaseModel, Field
from pymongo import ReplaceOne
from pymongo.errors import PyMongoError

from docchat.errors import TransientError, bounded

logger = logging.getLogger(__name__)


def vector_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}_chunk_{chunk_index}"


class VectorRecord(BaseModel):
    id: str
    values: List[float]
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorMatch(BaseModel):
    id: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorIndex(ABC):

    @abstractmethod
    async def upsert(self, namespace: str, records: List[VectorRecord]) -> None:
        """Insert or replace *records* by id. Idempotent."""

    @abstractmethod
    async def query(self, namespace: str, vector: List[float], top_k: int) -> List[VectorMatch]:
        """Nearest records in *namespace*, best match first, metadata included."""

    @abstractmethod
    async def delete(self, namespace: str, filter: Dict[str, Any]) -> int:
        """Delete records in *namespace* whose metadata matches *filter*."""


class MongoVectorIndex(VectorIndex):
    def __init__(self, collection, index_name: str = "vector_index", num_candidates: int = 100, timeout: float = 30.0):
        self.collection = collection
        self.index_name = index_name
        self.num_candidates = num_candidates
        self.timeout = timeout

    async def upsert(self, namespace: str, records: List[VectorRecord]) -> None:
        if not records:
            return
        ops = [
            ReplaceOne(
                {"_id": r.id},
                {"_id": r.id, "namespace": namespace, "embedding": r.values, "metadata": r.metadata},
                upsert=True,
            )
            for r in records
        ]
        try:
            await bounded(self.collection.bulk_write(ops, ordered=False), self.timeout, "vector upsert")
        except PyMongoError as e:
            raise TransientError(f"Vector upsert failed: {e}") from e

    async def query(self, namespace: str, vector: List[float], top_k: int) -> List[VectorMatch]:
        pipeline = [
            {
                "$vectorSearch": {
                    "index": self.index_name,
                    "path": "embedding",
                    "queryVector": vector,
                    "numCandidates": max(self.num_candidates, top_k),
                    "limit": top_k,
                    "filter": {"namespace": {"$eq": namespace}},
                }
            },
            {
                "$project": {"_id": 1, "metadata": 1, "score": {"$meta": "vectorSearchScore"}}
            },
        ]
        try:
            docs = await bounded(self.collection.aggregate(pipeline).to_list(length=top_k), self.timeout, "vector query")
        except PyMongoError as e:
            raise TransientError(f"Vector query failed: {e}") from e

        matches = [
            VectorMatch(id=str(doc["_id"]), score=doc["score"], metadata=doc.get("metadata", {}))
            for doc in docs
        ]
        return sorted(matches, key=lambda m: m.score, reverse=True)

    async def delete(self, namespace: str, filter: Dict[str, Any]) -> int:
        query = {"namespace": namespace}
        query.update({f"metadata.{key}": value for key, value in filter.items()})
        try:
            result = await bounded(self.collection.delete_many(query), self.timeout, "vector delete")
        except PyMongoError as e:
            raise TransientError(f"Vector delete failed: {e}") from e
        return result.deleted_count
