"""Composition root: one instance of each capability per process.

Services receive their collaborators at construction; FastAPI handlers
reach them through the getters below, which tests override.
"""

from dataclasses import dataclass

from fastapi import Header, HTTPException, Request

from docchat.chat.service import QAService
from docchat.config import Settings, get_settings
from docchat.db.mongo import Database
from docchat.db.store import BeanieDocumentStore
from docchat.ingestion.chunker import DocumentChunker
from docchat.ingestion.extractor import DoclingTextExtractor
from docchat.ingestion.service import IngestionService
from docchat.retrieval.service import RetrievalService
from docchat.services.conversations import ConversationService
from docchat.services.documents import DocumentService
from docchat.services.embeddings import VoyageEmbeddingClient
from docchat.services.llm import LiteLLMCompletionClient
from docchat.services.queue import MongoJobQueue, RetryPolicy
from docchat.services.storage import GridFSStorage
from docchat.services.vector_index import MongoVectorIndex


@dataclass
class Services:
    conversations: ConversationService
    documents: DocumentService
    qa: QAService
    queue: MongoJobQueue
    ingestion: IngestionService


def build_services(database: Database, settings: Settings) -> Services:
    store = BeanieDocumentStore(database)
    storage = GridFSStorage(database.fs, timeout=settings.DOWNLOAD_TIMEOUT)
    embedder = VoyageEmbeddingClient(
        api_key=settings.VOYAGE_API_KEY,
        model=settings.VOYAGE_MODEL,
        dimension=settings.EMBEDDING_DIMENSION,
        batch_size=settings.EMBEDDING_BATCH_SIZE,
        timeout=settings.EMBED_TIMEOUT,
    )
    vector_index = MongoVectorIndex(
        database.collection(settings.VECTOR_COLLECTION),
        index_name=settings.VECTOR_INDEX_NAME,
        num_candidates=settings.VECTOR_NUM_CANDIDATES,
        timeout=settings.VECTOR_TIMEOUT,
    )
    llm = LiteLLMCompletionClient(settings.GEMINI_MODEL, settings.GEMINI_API_KEY, timeout=settings.COMPLETION_TIMEOUT)
    queue = MongoJobQueue(
        database.collection(settings.QUEUE_COLLECTION),
        retry_policy=RetryPolicy(
            max_attempts=settings.QUEUE_MAX_ATTEMPTS,
            base_delay=settings.QUEUE_BACKOFF_BASE_SECONDS,
            jitter=settings.QUEUE_BACKOFF_JITTER,
        ),
        lease_seconds=settings.QUEUE_LEASE_SECONDS,
    )

    return Services(
        conversations=ConversationService(store),
        documents=DocumentService(
            store,
            storage,
            vector_index,
            queue,
            max_documents=settings.MAX_DOCUMENTS_PER_CONVERSATION,
            max_upload_bytes=settings.MAX_UPLOAD_BYTES,
            max_status_ids=settings.MAX_STATUS_IDS,
        ),
        qa=QAService(store, RetrievalService(embedder, vector_index, top_k=settings.RETRIEVAL_TOP_K), llm),
        queue=queue,
        ingestion=IngestionService(
            store,
            storage,
            DoclingTextExtractor(),
            DocumentChunker(settings.CHUNK_SIZE, settings.CHUNK_OVERLAP, settings.CHUNK_PREVIEW_LENGTH),
            embedder,
            vector_index,
            upsert_batch_size=settings.UPSERT_BATCH_SIZE,
        ),
    )


def get_conversation_service(request: Request) -> ConversationService:
    return request.app.state.services.conversations


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.services.documents


def get_qa_service(request: Request) -> QAService:
    return request.app.state.services.qa


def get_job_queue(request: Request) -> MongoJobQueue:
    return request.app.state.services.queue


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    # Identity is established upstream; the core only scopes data by it
    return x_user_id


def require_admin(x_admin_key: str = Header(...)) -> None:
    if x_admin_key != get_settings().ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Forbidden")
