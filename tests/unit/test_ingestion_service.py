"""Unit tests for the ingestion pipeline (IngestionService)."""

from __future__ import annotations

import pytest

from docchat.errors import TransientError
from docchat.ingestion.service import IngestionStage
from docchat.models.files import DocumentStatus
from docchat.models.task import IngestionJob, JobDocument

from tests.conftest import FakeEmbeddingClient, FakeExtractor, FakeVectorIndex

TEXT_230 = "".join(chr(97 + i % 26) for i in range(230))  # 3 chunks at size 100 / overlap 20


def _job(*document_ids: str, conversation_id: str = "conv-1", names: dict | None = None) -> IngestionJob:
    names = names or {}
    return IngestionJob(
        conversation_id=conversation_id,
        documents=[
            JobDocument(document_id=d, file_name=names.get(d, f"{d}.pdf"), content_ref=f"ref-{d}")
            for d in document_ids
        ],
    )


@pytest.fixture()
def arranged(store, content_store):
    store.add_conversation("conv-1")
    for doc_id in ("doc-1", "doc-2", "doc-3"):
        store.add_document(doc_id, file_name=f"{doc_id}.pdf")
        content_store.contents[f"ref-{doc_id}"] = TEXT_230.encode()
    return store


class TestSuccessfulIngestion:
    @pytest.mark.asyncio
    async def test_document_completed_with_deterministic_vector_ids(self, arranged, make_ingestion, vector_index) -> None:
        report = await make_ingestion().process_job(_job("doc-1"))

        assert arranged.documents["doc-1"].status is DocumentStatus.COMPLETED
        assert report.completed == ["doc-1"]
        assert vector_index.ids("conv-1") == ["doc-1_chunk_0", "doc-1_chunk_1", "doc-1_chunk_2"]

    @pytest.mark.asyncio
    async def test_vector_metadata(self, arranged, make_ingestion, vector_index) -> None:
        await make_ingestion().process_job(_job("doc-1"))

        meta = vector_index.namespaces["conv-1"]["doc-1_chunk_1"].metadata
        assert meta["documentId"] == "doc-1"
        assert meta["conversationId"] == "conv-1"
        assert meta["fileName"] == "doc-1.pdf"
        assert meta["page"] == 1
        assert meta["chunkIndex"] == 1
        assert meta["text"] == TEXT_230[80:180]
        assert meta["preview"] == TEXT_230[80:110]

    @pytest.mark.asyncio
    async def test_all_chunks_embedded_in_one_call(self, arranged, make_ingestion, embedder) -> None:
        await make_ingestion().process_job(_job("doc-1"))
        assert len(embedder.document_calls) == 1
        assert len(embedder.document_calls[0]) == 3

    @pytest.mark.asyncio
    async def test_upsert_in_fixed_size_batches(self, arranged, make_ingestion, vector_index) -> None:
        await make_ingestion(upsert_batch_size=2).process_job(_job("doc-1"))
        assert [ids for _, ids in vector_index.upsert_calls] == [
            ["doc-1_chunk_0", "doc-1_chunk_1"],
            ["doc-1_chunk_2"],
        ]
        assert all(ns == "conv-1" for ns, _ in vector_index.upsert_calls)

    @pytest.mark.asyncio
    async def test_pages_keep_their_numbers(self, arranged, make_ingestion, content_store, vector_index) -> None:
        content_store.contents["ref-doc-1"] = b"first page\fsecond page"
        await make_ingestion().process_job(_job("doc-1"))
        pages = [r.metadata["page"] for r in vector_index.namespaces["conv-1"].values()]
        assert pages == [1, 2]


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_rerun_creates_no_duplicates(self, arranged, make_ingestion, vector_index, embedder) -> None:
        service = make_ingestion()
        await service.process_job(_job("doc-1"))
        report = await service.process_job(_job("doc-1"))

        assert vector_index.ids("conv-1") == ["doc-1_chunk_0", "doc-1_chunk_1", "doc-1_chunk_2"]
        assert arranged.documents["doc-1"].status is DocumentStatus.COMPLETED
        assert report.outcomes[0].skipped
        assert len(embedder.document_calls) == 1

    @pytest.mark.asyncio
    async def test_redelivery_processes_only_unfinished_documents(self, arranged, make_ingestion, embedder) -> None:
        arranged.documents["doc-1"].status = DocumentStatus.COMPLETED
        report = await make_ingestion().process_job(_job("doc-1", "doc-2"))

        assert [o.skipped for o in report.outcomes] == [True, False]
        assert arranged.documents["doc-2"].status is DocumentStatus.COMPLETED
        assert len(embedder.document_calls) == 1


class TestPerDocumentFailures:
    @pytest.mark.asyncio
    async def test_extraction_failure_isolated_to_its_document(self, arranged, make_ingestion, vector_index) -> None:
        service = make_ingestion(extractor=FakeExtractor(failing=["doc-2.pdf"]))
        report = await service.process_job(_job("doc-1", "doc-2"))

        assert arranged.documents["doc-1"].status is DocumentStatus.COMPLETED
        assert arranged.documents["doc-2"].status is DocumentStatus.FAILED
        assert report.failed == ["doc-2"]
        assert all(i.startswith("doc-1_") for i in vector_index.ids("conv-1"))

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_siblings(self, arranged, make_ingestion) -> None:
        service = make_ingestion(extractor=FakeExtractor(failing=["doc-1.pdf"]))
        await service.process_job(_job("doc-1", "doc-2"))

        assert arranged.documents["doc-1"].status is DocumentStatus.FAILED
        assert arranged.documents["doc-2"].status is DocumentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_dimension_mismatch_fails_document(self, arranged, make_ingestion, vector_index) -> None:
        service = make_ingestion(embedder=FakeEmbeddingClient(dimension=4, width=3))
        report = await service.process_job(_job("doc-1"))

        assert arranged.documents["doc-1"].status is DocumentStatus.FAILED
        assert "DimensionMismatchError" in report.outcomes[0].error
        assert vector_index.ids("conv-1") == []

    @pytest.mark.asyncio
    async def test_transient_embedding_error_fails_document(self, arranged, make_ingestion) -> None:
        service = make_ingestion(embedder=FakeEmbeddingClient(fail=TransientError("quota")))
        report = await service.process_job(_job("doc-1"))

        assert arranged.documents["doc-1"].status is DocumentStatus.FAILED
        assert report.outcomes[0].stage is IngestionStage.DOCUMENT_FAILED

    @pytest.mark.asyncio
    async def test_missing_content_fails_document(self, arranged, make_ingestion, content_store) -> None:
        del content_store.contents["ref-doc-1"]
        await make_ingestion().process_job(_job("doc-1"))
        assert arranged.documents["doc-1"].status is DocumentStatus.FAILED

    @pytest.mark.asyncio
    async def test_document_without_text_fails(self, arranged, make_ingestion, content_store) -> None:
        content_store.contents["ref-doc-1"] = b""
        report = await make_ingestion().process_job(_job("doc-1"))

        assert arranged.documents["doc-1"].status is DocumentStatus.FAILED
        assert "ExtractionError" in report.outcomes[0].error

    @pytest.mark.asyncio
    async def test_deleted_document_is_skipped(self, arranged, make_ingestion, vector_index) -> None:
        del arranged.documents["doc-1"]
        report = await make_ingestion().process_job(_job("doc-1"))

        assert report.outcomes[0].skipped
        assert vector_index.ids("conv-1") == []


class TestJobLevelFailure:
    @pytest.mark.asyncio
    async def test_unfinished_documents_marked_failed_then_reraised(self, arranged, make_ingestion) -> None:
        original = arranged.get_document

        async def flaky_get_document(document_id: str):
            if document_id == "doc-2":
                raise ConnectionError("store unavailable")
            return await original(document_id)

        arranged.get_document = flaky_get_document

        with pytest.raises(ConnectionError):
            await make_ingestion().process_job(_job("doc-1", "doc-2", "doc-3"))

        assert arranged.documents["doc-1"].status is DocumentStatus.COMPLETED
        assert arranged.documents["doc-2"].status is DocumentStatus.FAILED
        assert arranged.documents["doc-3"].status is DocumentStatus.FAILED

    @pytest.mark.asyncio
    async def test_failure_to_mark_leaves_documents_processing_for_retry(self, arranged, make_ingestion) -> None:
        async def broken(*args, **kwargs):
            raise ConnectionError("store unavailable")

        arranged.get_document = broken
        arranged.fail_documents = broken

        with pytest.raises(ConnectionError):
            await make_ingestion().process_job(_job("doc-1"))

        assert arranged.documents["doc-1"].status is DocumentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_namespace_is_the_conversation(self, store, content_store, make_ingestion) -> None:
        store.add_conversation("conv-A")
        store.add_conversation("conv-B")
        store.add_document("doc-a", conversation_id="conv-A")
        store.add_document("doc-b", conversation_id="conv-B")
        content_store.contents["ref-doc-a"] = b"alpha"
        content_store.contents["ref-doc-b"] = b"bravo"
        index = FakeVectorIndex()
        service = make_ingestion(vector_index=index)

        await service.process_job(_job("doc-a", conversation_id="conv-A"))
        await service.process_job(_job("doc-b", conversation_id="conv-B"))

        assert index.ids("conv-A") == ["doc-a_chunk_0"]
        assert index.ids("conv-B") == ["doc-b_chunk_0"]
