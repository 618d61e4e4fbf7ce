from beanie import Document
from pydantic import Field
from datetime import datetime
from enum import Enum

from docchat.models.core import utcnow


class DocumentStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not DocumentStatus.PROCESSING


class DocumentRecord(Document):
    conversation_id: str
    file_name: str
    # Opaque reference into the content store (GridFS id)
    content_ref: str
    file_size: int = 0
    content_type: str = "application/pdf"
    status: DocumentStatus = DocumentStatus.PROCESSING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "documents"
