import logging
from typing import List, Optional, Sequence

from fastapi import UploadFile

from docchat.db.store import DocumentStore
from docchat.errors import AdvisoryResult, InputValidationError, NotFoundError, describe
from docchat.models.files import DocumentRecord, DocumentStatus
from docchat.models.schemas import StatusSummary, UploadRef
from docchat.models.task import IngestionJob, JobDocument
from docchat.services.queue import JobQueue
from docchat.services.storage import ContentStore
from docchat.services.vector_index import VectorIndex

logger = logging.getLogger(__name__)


class DocumentService:
    """Document lifecycle: upload, confirm, list, fetch, delete, poll status."""

    def __init__(
        self,
        store: DocumentStore,
        content_store: ContentStore,
        vector_index: VectorIndex,
        queue: JobQueue,
        max_documents: int = 10,
        max_upload_bytes: int = 10 * 1024 * 1024,
        max_status_ids: int = 3,
    ):
        self.store = store
        self.content_store = content_store
        self.vector_index = vector_index
        self.queue = queue
        self.max_documents = max_documents
        self.max_upload_bytes = max_upload_bytes
        self.max_status_ids = max_status_ids

    async def upload_files(self, conversation_id: str, files: Sequence[UploadFile], user_id: Optional[str] = None) -> List[DocumentRecord]:
        await self._require_conversation(conversation_id, user_id)
        await self._check_capacity(conversation_id, len(files))
        for file in files:
            if file.size is not None and file.size > self.max_upload_bytes:
                raise InputValidationError(
                    f"File {file.filename} exceeds {self.max_upload_bytes // (1024 * 1024)}MB limit"
                )

        uploads = []
        for file in files:
            content_ref = await self.content_store.upload_file(file, metadata={"conversation_id": conversation_id})
            uploads.append(UploadRef(
                file_name=file.filename or "document.pdf",
                content_ref=content_ref,
                file_size=file.size or 0,
                content_type=file.content_type or "application/pdf",
            ))
        return await self._register(conversation_id, uploads)

    async def confirm_uploads(self, conversation_id: str, uploads: Sequence[UploadRef], user_id: Optional[str] = None) -> List[DocumentRecord]:
        """Register already-stored files and queue one ingestion job for the batch."""
        await self._require_conversation(conversation_id, user_id)
        await self._check_capacity(conversation_id, len(uploads))
        return await self._register(conversation_id, uploads)

    async def list_documents(self, conversation_id: str, user_id: Optional[str] = None) -> List[DocumentRecord]:
        await self._require_conversation(conversation_id, user_id)
        return await self.store.list_documents(conversation_id)

    async def get_document(self, document_id: str, user_id: Optional[str] = None) -> DocumentRecord:
        document = await self.store.get_document(document_id)
        if document is None or await self.store.get_conversation(document.conversation_id, user_id) is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def delete_document(self, document_id: str, user_id: Optional[str] = None) -> DocumentRecord:
        """Remove stored bytes, then vectors (advisory), then the record."""
        document = await self.get_document(document_id, user_id)

        await self.content_store.delete_content(document.content_ref)
        await self.remove_vectors(document)
        await self.store.delete_document(document_id)
        logger.info(f"Deleted document {document_id} ({document.file_name})")
        return document

    async def remove_vectors(self, document: DocumentRecord) -> AdvisoryResult:
        """Advisory: an index outage must never block a user-initiated delete."""
        try:
            deleted = await self.vector_index.delete(document.conversation_id, {"documentId": str(document.id)})
        except Exception as e:
            return AdvisoryResult("vector cleanup", False, f"document {document.id}: {describe(e)}").log(logger)
        return AdvisoryResult("vector cleanup", True, f"removed {deleted} vector(s) of document {document.id}").log(logger)

    async def status_summary(self, document_ids: Sequence[str], user_id: Optional[str] = None) -> StatusSummary:
        ids = list(dict.fromkeys(i.strip() for i in document_ids if i and i.strip()))
        if not 1 <= len(ids) <= self.max_status_ids:
            raise InputValidationError(f"Provide between 1 and {self.max_status_ids} document ids")

        documents = await self.store.get_documents(ids)
        if user_id is not None:
            owned = set()
            for conversation_id in {d.conversation_id for d in documents}:
                if await self.store.get_conversation(conversation_id, user_id) is not None:
                    owned.add(conversation_id)
            documents = [d for d in documents if d.conversation_id in owned]

        summary = StatusSummary()
        for document in documents:
            if document.status is DocumentStatus.PROCESSING:
                summary.processing += 1
            elif document.status is DocumentStatus.COMPLETED:
                summary.completed += 1
            elif document.status is DocumentStatus.FAILED:
                summary.failed += 1
        return summary

    async def _register(self, conversation_id: str, uploads: Sequence[UploadRef]) -> List[DocumentRecord]:
        records = await self.store.create_documents(conversation_id, uploads)
        job = IngestionJob(
            conversation_id=conversation_id,
            documents=[
                JobDocument(document_id=str(r.id), file_name=r.file_name, content_ref=r.content_ref)
                for r in records
            ],
        )
        try:
            await self.queue.enqueue(job)
        except Exception:
            # Without a job nothing would ever move these records out of PROCESSING
            try:
                await self.store.fail_documents([d.document_id for d in job.documents])
            except Exception:
                logger.exception(f"[{conversation_id}] Enqueue failed and new documents could not be marked FAILED")
            raise
        logger.info(f"[{conversation_id}] {len(records)} document(s) queued for ingestion")
        return records

    async def _require_conversation(self, conversation_id: str, user_id: Optional[str]):
        conversation = await self.store.get_conversation(conversation_id, user_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    async def _check_capacity(self, conversation_id: str, incoming: int):
        if incoming < 1:
            raise InputValidationError("At least one file is required")
        existing = await self.store.count_documents(conversation_id)
        if existing + incoming > self.max_documents:
            raise InputValidationError(
                f"Maximum {self.max_documents} documents allowed per conversation. "
                f"Current: {existing}, Uploading: {incoming}"
            )
