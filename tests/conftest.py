"""Shared pytest configuration, fakes and fixtures.

Every external capability (document store, content store, extractor,
embeddings, vector index, completions, queue) has an in-memory fake here
so the core services run without MongoDB or provider credentials.
"""

import itertools
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("VOYAGE_API_KEY", "test-voyage-key")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")

from docchat.db.store import DocumentStore  # noqa: E402
from docchat.errors import NotFoundError  # noqa: E402
from docchat.ingestion.chunker import DocumentChunker, PageText  # noqa: E402
from docchat.ingestion.extractor import TextExtractor  # noqa: E402
from docchat.ingestion.service import IngestionService  # noqa: E402
from docchat.models.core import MessageRole  # noqa: E402
from docchat.models.files import DocumentStatus  # noqa: E402
from docchat.models.task import IngestionJob, QueuedJob  # noqa: E402
from docchat.services.embeddings import EmbeddingClient  # noqa: E402
from docchat.services.llm import CompletionClient  # noqa: E402
from docchat.services.queue import JobQueue  # noqa: E402
from docchat.services.storage import ContentStore  # noqa: E402
from docchat.services.vector_index import VectorIndex, VectorMatch, VectorRecord  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


_BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ── Records ─────────────────────────────────────────────────────────────


@dataclass
class FakeConversation:
    id: str
    user_id: str
    title: Optional[str] = None
    created_at: datetime = _BASE_TIME
    updated_at: datetime = _BASE_TIME


@dataclass
class FakeDocument:
    id: str
    conversation_id: str
    file_name: str
    content_ref: str
    status: DocumentStatus = DocumentStatus.PROCESSING
    file_size: int = 0
    content_type: str = "application/pdf"
    created_at: datetime = _BASE_TIME
    updated_at: datetime = _BASE_TIME


@dataclass
class FakeMessage:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime = _BASE_TIME


# ── Document store ──────────────────────────────────────────────────────


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self.conversations: Dict[str, FakeConversation] = {}
        self.documents: Dict[str, FakeDocument] = {}
        self.messages: List[FakeMessage] = []
        self.title_writes = 0
        self.events: List[Tuple[str, str]] = []
        self._ids = itertools.count(1)

    def _tick(self) -> datetime:
        return _BASE_TIME + timedelta(seconds=next(self._ids))

    # helpers for arranging tests
    def add_conversation(self, conversation_id: str = "conv-1", user_id: str = "user-1", title: Optional[str] = None) -> FakeConversation:
        now = self._tick()
        conversation = FakeConversation(conversation_id, user_id, title, now, now)
        self.conversations[conversation_id] = conversation
        return conversation

    def add_document(
        self,
        document_id: str,
        conversation_id: str = "conv-1",
        file_name: str = "policy.pdf",
        status: DocumentStatus = DocumentStatus.PROCESSING,
    ) -> FakeDocument:
        now = self._tick()
        document = FakeDocument(document_id, conversation_id, file_name, f"ref-{document_id}", status,
                                created_at=now, updated_at=now)
        self.documents[document_id] = document
        return document

    async def create_conversation(self, user_id: str) -> FakeConversation:
        return self.add_conversation(f"conv-{next(self._ids)}", user_id)

    async def list_conversations(self, user_id: str) -> List[FakeConversation]:
        owned = [c for c in self.conversations.values() if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.updated_at, reverse=True)

    async def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Optional[FakeConversation]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or (user_id is not None and conversation.user_id != user_id):
            return None
        return conversation

    async def set_title_if_missing(self, conversation_id: str, title: str) -> bool:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.title is not None:
            return False
        conversation.title = title
        self.title_writes += 1
        return True

    async def add_message_pair(self, conversation_id: str, question: str, answer: str) -> Tuple[FakeMessage, FakeMessage]:
        user = FakeMessage(f"msg-{next(self._ids)}", conversation_id, MessageRole.USER, question, self._tick())
        assistant = FakeMessage(f"msg-{next(self._ids)}", conversation_id, MessageRole.ASSISTANT, answer, self._tick())
        self.messages.extend([user, assistant])
        return user, assistant

    async def list_messages(self, conversation_id: str) -> List[FakeMessage]:
        return sorted((m for m in self.messages if m.conversation_id == conversation_id), key=lambda m: m.created_at)

    async def create_documents(self, conversation_id: str, uploads: Sequence[Any]) -> List[FakeDocument]:
        records = []
        for upload in uploads:
            document = self.add_document(f"doc-{next(self._ids)}", conversation_id, upload.file_name)
            document.content_ref = upload.content_ref
            records.append(document)
        return records

    async def list_documents(self, conversation_id: str) -> List[FakeDocument]:
        docs = [d for d in self.documents.values() if d.conversation_id == conversation_id]
        return sorted(docs, key=lambda d: d.created_at, reverse=True)

    async def count_documents(self, conversation_id: str) -> int:
        return len([d for d in self.documents.values() if d.conversation_id == conversation_id])

    async def get_document(self, document_id: str) -> Optional[FakeDocument]:
        return self.documents.get(document_id)

    async def get_documents(self, document_ids: Sequence[str]) -> List[FakeDocument]:
        return [self.documents[i] for i in document_ids if i in self.documents]

    async def set_document_status(self, document_id: str, status: DocumentStatus) -> bool:
        document = self.documents.get(document_id)
        if document is None or document.status is not DocumentStatus.PROCESSING:
            return False
        document.status = status
        return True

    async def fail_documents(self, document_ids: Sequence[str]) -> int:
        marked = 0
        for document_id in document_ids:
            if await self.set_document_status(document_id, DocumentStatus.FAILED):
                marked += 1
        return marked

    async def delete_document(self, document_id: str) -> None:
        self.events.append(("delete_record", document_id))
        self.documents.pop(document_id, None)


# ── Capabilities ────────────────────────────────────────────────────────


class FakeContentStore(ContentStore):
    def __init__(self, contents: Optional[Dict[str, bytes]] = None, events: Optional[list] = None) -> None:
        self.contents: Dict[str, bytes] = dict(contents or {})
        self.events = events if events is not None else []

    async def upload_file(self, file, metadata: dict = None) -> str:
        reference = f"ref-upload-{len(self.contents) + 1}"
        self.contents[reference] = await file.read()
        return reference

    async def fetch_content(self, reference: str) -> bytes:
        if reference not in self.contents:
            raise NotFoundError(f"Stored content {reference} not found")
        return self.contents[reference]

    async def delete_content(self, reference: str) -> None:
        self.events.append(("delete_content", reference))
        self.contents.pop(reference, None)


class FakeExtractor(TextExtractor):
    """Decodes bytes as UTF-8; a form feed separates pages."""

    def __init__(self, failing: Sequence[str] = ()) -> None:
        self.failing = set(failing)

    async def extract(self, content: bytes, file_name: str) -> List[PageText]:
        if file_name in self.failing:
            raise RuntimeError(f"cannot parse {file_name}")
        return [PageText(page_number=n, text=t) for n, t in enumerate(content.decode().split("\f"), start=1)]


class FakeEmbeddingClient(EmbeddingClient):
    def __init__(self, dimension: int = 4, width: Optional[int] = None, fail: Optional[Exception] = None) -> None:
        self.dimension = dimension
        self.width = width or dimension
        self.fail = fail
        self.document_calls: List[List[str]] = []
        self.query_calls: List[str] = []

    def _vector(self, text: str) -> List[float]:
        return [float(len(text))] + [0.5] * (self.width - 1)

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.document_calls.append(list(texts))
        if self.fail:
            raise self.fail
        return [self._vector(t) for t in texts]

    async def embed_query(self, text: str) -> List[float]:
        self.query_calls.append(text)
        if self.fail:
            raise self.fail
        return self._vector(text)


class FakeVectorIndex(VectorIndex):
    """Keyed by id per namespace; query returns records in insertion order
    with scores descending from 0.9."""

    def __init__(self, events: Optional[list] = None, fail_delete: bool = False) -> None:
        self.namespaces: Dict[str, Dict[str, VectorRecord]] = {}
        self.upsert_calls: List[Tuple[str, List[str]]] = []
        self.queries: List[Tuple[str, int]] = []
        self.events = events if events is not None else []
        self.fail_delete = fail_delete

    async def upsert(self, namespace: str, records: List[VectorRecord]) -> None:
        self.upsert_calls.append((namespace, [r.id for r in records]))
        bucket = self.namespaces.setdefault(namespace, {})
        for record in records:
            bucket[record.id] = record

    async def query(self, namespace: str, vector: List[float], top_k: int) -> List[VectorMatch]:
        self.queries.append((namespace, top_k))
        records = list(self.namespaces.get(namespace, {}).values())[:top_k]
        return [VectorMatch(id=r.id, score=round(0.9 - 0.1 * i, 2), metadata=r.metadata) for i, r in enumerate(records)]

    async def delete(self, namespace: str, filter: Dict[str, Any]) -> int:
        self.events.append(("delete_vectors", filter.get("documentId")))
        if self.fail_delete:
            raise RuntimeError("index unavailable")
        bucket = self.namespaces.get(namespace, {})
        doomed = [k for k, r in bucket.items() if all(r.metadata.get(f) == v for f, v in filter.items())]
        for key in doomed:
            del bucket[key]
        return len(doomed)

    def ids(self, namespace: str) -> List[str]:
        return list(self.namespaces.get(namespace, {}))


class FakeCompletionClient(CompletionClient):
    def __init__(self, responder: Callable[[str], str]) -> None:
        self.responder = responder
        self.prompts: List[Tuple[str, Optional[str]]] = []

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        self.prompts.append((prompt, system_prompt))
        return self.responder(prompt)


class FakeQueue(JobQueue):
    """Dead-letters on the final attempt, like MongoJobQueue."""

    def __init__(self, jobs: Optional[List[QueuedJob]] = None, enqueue_error: Optional[Exception] = None) -> None:
        self.pending: List[QueuedJob] = list(jobs or [])
        self.enqueue_error = enqueue_error
        self.enqueued: List[IngestionJob] = []
        self.acked: List[str] = []
        self.nacked: List[Tuple[str, str]] = []
        self.dead: List[str] = []
        self.lease_extensions: List[str] = []

    async def enqueue(self, job: IngestionJob) -> QueuedJob:
        if self.enqueue_error:
            raise self.enqueue_error
        self.enqueued.append(job)
        return QueuedJob(id=f"job-{len(self.enqueued)}", type="document-ready", payload=job.model_dump(mode="json"))

    async def dequeue(self, worker_id: str) -> Optional[QueuedJob]:
        return self.pending.pop(0) if self.pending else None

    async def ack(self, job: QueuedJob) -> bool:
        self.acked.append(job.id)
        return True

    async def nack(self, job: QueuedJob, error: str) -> Optional[float]:
        self.nacked.append((job.id, error))
        if job.attempts >= job.max_attempts:
            self.dead.append(job.id)
            if self.on_dead_letter is not None:
                await self.on_dead_letter(job)
            return None
        return 1.0

    async def extend_lease(self, job: QueuedJob) -> bool:
        self.lease_extensions.append(job.id)
        return True

    async def list_dead_letters(self, limit: int = 100) -> List[QueuedJob]:
        return []


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def vector_index() -> FakeVectorIndex:
    return FakeVectorIndex()


@pytest.fixture()
def embedder() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture()
def content_store() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture()
def chunker() -> DocumentChunker:
    return DocumentChunker(chunk_size=100, chunk_overlap=20, preview_length=30)


@pytest.fixture()
def make_ingestion(store, content_store, vector_index, embedder, chunker):
    def _make(extractor: Optional[TextExtractor] = None, **overrides) -> IngestionService:
        params = dict(
            store=store,
            content_store=content_store,
            extractor=extractor or FakeExtractor(),
            chunker=chunker,
            embedder=embedder,
            vector_index=vector_index,
            upsert_batch_size=100,
        )
        params.update(overrides)
        return IngestionService(**params)

    return _make
