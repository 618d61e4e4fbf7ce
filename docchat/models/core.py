from beanie import Document
from pydantic import Field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class Conversation(Document):
    user_id: str
    # Set at most once, by the first answered question
    title: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "conversations"


class Message(Document):
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "messages"
