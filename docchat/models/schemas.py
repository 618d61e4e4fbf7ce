from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, List, Optional

from docchat.models.core import MessageRole
from docchat.models.files import DocumentStatus


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime

    @classmethod
    def from_record(cls, message: Any) -> "MessageOut":
        return cls(
            id=str(message.id),
            conversation_id=message.conversation_id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
        )


class DocumentOut(BaseModel):
    id: str
    conversation_id: str
    file_name: str
    status: DocumentStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, document: Any) -> "DocumentOut":
        return cls(
            id=str(document.id),
            conversation_id=document.conversation_id,
            file_name=document.file_name,
            status=document.status,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class ConversationOut(BaseModel):
    id: str
    user_id: str
    title: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, conversation: Any) -> "ConversationOut":
        return cls(
            id=str(conversation.id),
            user_id=conversation.user_id,
            title=conversation.title,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )


class ConversationDetail(ConversationOut):
    documents: List[DocumentOut] = Field(default_factory=list)
    messages: List[MessageOut] = Field(default_factory=list)


class Source(BaseModel):
    file_name: Optional[str] = None
    page: Optional[int] = None
    preview: str = ""
    score: float


class AnswerResponse(BaseModel):
    user_message: MessageOut
    assistant_message: MessageOut
    sources: List[Source] = Field(default_factory=list)


class StatusSummary(BaseModel):
    processing: int = 0
    completed: int = 0
    failed: int = 0


class UploadRef(BaseModel):
    file_name: str = Field(min_length=1)
    content_ref: str = Field(min_length=1)
    file_size: int = 0
    content_type: str = "application/pdf"


class QuestionRequest(BaseModel):
    question: str = Field(min_length=1)


class ConfirmUploadsRequest(BaseModel):
    uploads: List[UploadRef] = Field(min_length=1)
