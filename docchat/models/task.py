from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

INGESTION_JOB = "document-ready"


class JobDocument(BaseModel):
    document_id: str
    file_name: str
    content_ref: str


class IngestionJob(BaseModel):
    """Canonical payload of a "document ready" job.

    Serialized once when enqueued and validated once when claimed; the
    worker never inspects the raw payload.
    """

    conversation_id: str = Field(min_length=1)
    documents: List[JobDocument] = Field(min_length=1)


class QueuedJob(BaseModel):
    id: str
    type: str
    payload: dict
    status: str = "pending"  # pending | processing | completed | dead
    attempts: int = 0
    max_attempts: int = 5
    worker_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    available_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_mongo(cls, doc: dict) -> "QueuedJob":
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        return cls(**data)
