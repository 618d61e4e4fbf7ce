"""Ingestion pipeline: stored bytes -> pages -> chunks -> vectors.

Each document of a job walks
``DOWNLOADING -> EXTRACTING -> CHUNKING -> EMBEDDING -> UPSERTING`` and ends
COMPLETED or FAILED. A failing document never stops its siblings; only a
failure of the surrounding iteration (e.g. the document store going away)
escapes :meth:`IngestionService.process_job`, after the unfinished
documents have been marked FAILED.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from docchat.db.store import DocumentStore
from docchat.errors import DimensionMismatchError, DocChatError, ExtractionError, describe
from docchat.ingestion.chunker import ChunkResult, DocumentChunker
from docchat.ingestion.extractor import TextExtractor
from docchat.models.files import DocumentStatus
from docchat.models.task import IngestionJob, JobDocument
from docchat.services.embeddings import EmbeddingClient
from docchat.services.storage import ContentStore
from docchat.services.vector_index import VectorIndex, VectorRecord, vector_id

logger = logging.getLogger(__name__)


class IngestionStage(str, Enum):
    RECEIVED = "RECEIVED"
    DOWNLOADING = "DOWNLOADING"
    EXTRACTING = "EXTRACTING"
    CHUNKING = "CHUNKING"
    EMBEDDING = "EMBEDDING"
    UPSERTING = "UPSERTING"
    DOCUMENT_COMPLETED = "DOCUMENT_COMPLETED"
    DOCUMENT_FAILED = "DOCUMENT_FAILED"


@dataclass
class DocumentOutcome:
    document_id: str
    stage: IngestionStage
    chunks: int = 0
    skipped: bool = False
    error: Optional[str] = None


@dataclass
class JobReport:
    conversation_id: str
    outcomes: List[DocumentOutcome] = field(default_factory=list)

    @property
    def completed(self) -> List[str]:
        return [o.document_id for o in self.outcomes if o.stage is IngestionStage.DOCUMENT_COMPLETED]

    @property
    def failed(self) -> List[str]:
        return [o.document_id for o in self.outcomes if o.stage is IngestionStage.DOCUMENT_FAILED]


class IngestionService:
    def __init__(
        self,
        store: DocumentStore,
        content_store: ContentStore,
        extractor: TextExtractor,
        chunker: DocumentChunker,
        embedder: EmbeddingClient,
        vector_index: VectorIndex,
        upsert_batch_size: int = 100,
    ):
        self.store = store
        self.content_store = content_store
        self.extractor = extractor
        self.chunker = chunker
        self.embedder = embedder
        self.vector_index = vector_index
        self.upsert_batch_size = upsert_batch_size

    async def process_job(self, job: IngestionJob) -> JobReport:
        report = JobReport(conversation_id=job.conversation_id)
        logger.info(f"[{job.conversation_id}] {IngestionStage.RECEIVED.value}: {len(job.documents)} document(s)")

        try:
            # Sequential on purpose: parallelism across jobs is the queue's business
            for document in job.documents:
                report.outcomes.append(await self._process_document(job.conversation_id, document))
        except Exception:
            done = set(report.completed)
            unfinished = [d.document_id for d in job.documents if d.document_id not in done]
            try:
                marked = await self.store.fail_documents(unfinished)
                logger.error(f"[{job.conversation_id}] Job aborted, marked {marked} document(s) FAILED")
            except Exception:
                logger.exception(f"[{job.conversation_id}] Job aborted and unfinished documents could not be marked FAILED")
            raise

        logger.info(
            f"[{job.conversation_id}] Job finished: {len(report.completed)} completed, {len(report.failed)} failed"
        )
        return report

    async def abandon_job(self, job: IngestionJob) -> int:
        """Mark every still-PROCESSING document of a job that will never run again FAILED."""
        marked = await self.store.fail_documents([d.document_id for d in job.documents])
        logger.error(f"[{job.conversation_id}] Job abandoned, marked {marked} document(s) FAILED")
        return marked

    async def _process_document(self, conversation_id: str, document: JobDocument) -> DocumentOutcome:
        record = await self.store.get_document(document.document_id)
        if record is None:
            logger.warning(f"[{document.document_id}] Document no longer exists, skipping")
            return DocumentOutcome(document.document_id, IngestionStage.DOCUMENT_FAILED, skipped=True, error="deleted")
        if record.status.is_terminal:
            # Redelivered job: terminal documents are never reprocessed
            stage = (IngestionStage.DOCUMENT_COMPLETED if record.status is DocumentStatus.COMPLETED
                     else IngestionStage.DOCUMENT_FAILED)
            logger.info(f"[{document.document_id}] Already {record.status.value}, skipping")
            return DocumentOutcome(document.document_id, stage, skipped=True)

        stage = IngestionStage.DOWNLOADING
        try:
            self._enter(document, stage)
            content = await self.content_store.fetch_content(document.content_ref)

            stage = self._enter(document, IngestionStage.EXTRACTING)
            pages = await self.extractor.extract(content, document.file_name)

            stage = self._enter(document, IngestionStage.CHUNKING)
            chunks = self.chunker.chunk(pages)
            if not chunks:
                raise ExtractionError(f"No extractable text in {document.file_name}")
            logger.info(f"[{document.document_id}] Total chunks: {len(chunks)}")

            stage = self._enter(document, IngestionStage.EMBEDDING)
            vectors = await self.embedder.embed_documents([c.text for c in chunks])
            self._check_vectors(vectors, len(chunks))

            stage = self._enter(document, IngestionStage.UPSERTING)
            records = [self._vector_record(conversation_id, document, c, v) for c, v in zip(chunks, vectors)]
            await self._upsert(conversation_id, document, records)
        except Exception as e:
            logger.exception(f"[{document.document_id}] {IngestionStage.DOCUMENT_FAILED.value} during {stage.value}")
            await self.store.set_document_status(document.document_id, DocumentStatus.FAILED)
            return DocumentOutcome(document.document_id, IngestionStage.DOCUMENT_FAILED, error=describe(e))

        await self.store.set_document_status(document.document_id, DocumentStatus.COMPLETED)
        logger.info(f"[{document.document_id}] {IngestionStage.DOCUMENT_COMPLETED.value}: {document.file_name}")
        return DocumentOutcome(document.document_id, IngestionStage.DOCUMENT_COMPLETED, chunks=len(records))

    def _check_vectors(self, vectors: List[List[float]], expected_count: int):
        if len(vectors) != expected_count:
            raise DocChatError(f"Embedding count mismatch. Got {len(vectors)}, expected {expected_count}")
        for v in vectors:
            if len(v) != self.embedder.dimension:
                raise DimensionMismatchError(self.embedder.dimension, len(v))

    async def _upsert(self, conversation_id: str, document: JobDocument, records: List[VectorRecord]):
        total = (len(records) + self.upsert_batch_size - 1) // self.upsert_batch_size
        for n, start in enumerate(range(0, len(records), self.upsert_batch_size), start=1):
            await self.vector_index.upsert(conversation_id, records[start:start + self.upsert_batch_size])
            logger.info(f"[{document.document_id}] Upserted batch {n} / {total}")

    @staticmethod
    def _vector_record(conversation_id: str, document: JobDocument, chunk: ChunkResult, values: List[float]) -> VectorRecord:
        return VectorRecord(
            id=vector_id(document.document_id, chunk.chunk_index),
            values=values,
            metadata={
                "documentId": document.document_id,
                "conversationId": conversation_id,
                "fileName": document.file_name,
                "page": chunk.page_number,
                "chunkIndex": chunk.chunk_index,
                "text": chunk.text,
                "preview": chunk.preview,
            },
        )

    @staticmethod
    def _enter(document: JobDocument, stage: IngestionStage) -> IngestionStage:
        logger.info(f"[{document.document_id}] {stage.value}")
        return stage
