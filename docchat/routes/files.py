from fastapi import APIRouter, Depends, File, UploadFile
from typing import List

from docchat.dependencies import get_document_service, get_user_id
from docchat.models.schemas import ConfirmUploadsRequest, DocumentOut, StatusSummary
from docchat.services.documents import DocumentService

router = APIRouter(prefix="/files", tags=["Files"])

@router.post("/{conversation_id}/upload", response_model=List[DocumentOut])
async def upload_files(
    conversation_id: str,
    files: List[UploadFile] = File(...),
    user_id: str = Depends(get_user_id),
    documents: DocumentService = Depends(get_document_service),
):
    records = await documents.upload_files(conversation_id, files, user_id=user_id)
    return [DocumentOut.from_record(r) for r in records]

@router.post("/{conversation_id}/confirm-uploads", response_model=List[DocumentOut])
async def confirm_uploads(
    conversation_id: str,
    request: ConfirmUploadsRequest,
    user_id: str = Depends(get_user_id),
    documents: DocumentService = Depends(get_document_service),
):
    records = await documents.confirm_uploads(conversation_id, request.uploads, user_id=user_id)
    return [DocumentOut.from_record(r) for r in records]

@router.get("/status/{document_ids}", response_model=StatusSummary)
async def document_status(
    document_ids: str,
    user_id: str = Depends(get_user_id),
    documents: DocumentService = Depends(get_document_service),
):
    # Comma-separated, at most MAX_STATUS_IDS ids
    return await documents.status_summary(document_ids.split(","), user_id=user_id)

@router.get("/document/{document_id}", response_model=DocumentOut)
async def get_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    documents: DocumentService = Depends(get_document_service),
):
    return DocumentOut.from_record(await documents.get_document(document_id, user_id=user_id))

@router.delete("/document/{document_id}", response_model=DocumentOut)
async def delete_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    documents: DocumentService = Depends(get_document_service),
):
    return DocumentOut.from_record(await documents.delete_document(document_id, user_id=user_id))

@router.get("/{conversation_id}", response_model=List[DocumentOut])
async def list_documents(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    documents: DocumentService = Depends(get_document_service),
):
    return [DocumentOut.from_record(d) for d in await documents.list_documents(conversation_id, user_id=user_id)]
