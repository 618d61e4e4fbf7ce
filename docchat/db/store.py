"""Document Store: persisted conversations, documents and messages.

:class:`DocumentStore` is the seam the core services depend on;
:class:`BeanieDocumentStore` is the MongoDB implementation used by the
API and the worker.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple

from beanie import PydanticObjectId
from bson.errors import InvalidId

from docchat.db.mongo import Database
from docchat.models.core import Conversation, Message, MessageRole, utcnow
from docchat.models.files import DocumentRecord, DocumentStatus
from docchat.models.schemas import UploadRef

logger = logging.getLogger(__name__)


class DocumentStore(ABC):

    # -- conversations --------------------------------------------------------

    @abstractmethod
    async def create_conversation(self, user_id: str) -> Conversation: ...

    @abstractmethod
    async def list_conversations(self, user_id: str) -> List[Conversation]:
        """Conversations of *user_id*, most recently updated first."""

    @abstractmethod
    async def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Optional[Conversation]:
        """Return the conversation, or ``None`` if absent or owned by someone else."""

    @abstractmethod
    async def set_title_if_missing(self, conversation_id: str, title: str) -> bool:
        """Set the title only when none is set. Returns whether it was written."""

    # -- messages -------------------------------------------------------------

    @abstractmethod
    async def add_message_pair(self, conversation_id: str, question: str, answer: str) -> Tuple[Message, Message]:
        """Persist the USER and ASSISTANT messages atomically, in that order."""

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[Message]: ...

    # -- documents ------------------------------------------------------------

    @abstractmethod
    async def create_documents(self, conversation_id: str, uploads: Sequence[UploadRef]) -> List[DocumentRecord]: ...

    @abstractmethod
    async def list_documents(self, conversation_id: str) -> List[DocumentRecord]:
        """Documents of a conversation, newest first."""

    @abstractmethod
    async def count_documents(self, conversation_id: str) -> int: ...

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[DocumentRecord]: ...

    @abstractmethod
    async def get_documents(self, document_ids: Sequence[str]) -> List[DocumentRecord]: ...

    @abstractmethod
    async def set_document_status(self, document_id: str, status: DocumentStatus) -> bool:
        """Move a PROCESSING document to *status*.

        Terminal documents are left untouched; returns whether a change
        was written.
        """

    @abstractmethod
    async def fail_documents(self, document_ids: Sequence[str]) -> int:
        """Mark every still-PROCESSING document in *document_ids* FAILED."""

    @abstractmethod
    async def delete_document(self, document_id: str) -> None: ...


def _oid(value: str) -> Optional[PydanticObjectId]:
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError):
        return None


class BeanieDocumentStore(DocumentStore):
    def __init__(self, database: Database):
        self.database = database

    async def create_conversation(self, user_id: str) -> Conversation:
        conversation = Conversation(user_id=user_id)
        await conversation.insert()
        return conversation

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        return await Conversation.find(Conversation.user_id == user_id).sort("-updated_at").to_list()

    async def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Optional[Conversation]:
        oid = _oid(conversation_id)
        if oid is None:
            return None
        conversation = await Conversation.get(oid)
        if conversation is None or (user_id is not None and conversation.user_id != user_id):
            return None
        return conversation

    async def set_title_if_missing(self, conversation_id: str, title: str) -> bool:
        oid = _oid(conversation_id)
        if oid is None:
            return False
        result = await Conversation.get_motor_collection().update_one(
            {"_id": oid, "title": None},
            {"$set": {"title": title, "updated_at": utcnow()}},
        )
        return result.modified_count == 1

    async def add_message_pair(self, conversation_id: str, question: str, answer: str) -> Tuple[Message, Message]:
        now = utcnow()
        pair = [
            {"conversation_id": conversation_id, "role": MessageRole.USER.value, "content": question, "created_at": now},
            # Mongo keeps millisecond precision; keep the pair strictly ordered
            {"conversation_id": conversation_id, "role": MessageRole.ASSISTANT.value, "content": answer,
             "created_at": now + timedelta(milliseconds=1)},
        ]

        async with await self.database.client.start_session() as session:
            async with session.start_transaction():
                result = await Message.get_motor_collection().insert_many(
                    [dict(doc) for doc in pair], ordered=True, session=session
                )
                await Conversation.get_motor_collection().update_one(
                    {"_id": _oid(conversation_id)},
                    {"$set": {"updated_at": pair[1]["created_at"]}},
                    session=session,
                )

        user_message, assistant_message = (
            Message.model_construct(id=PydanticObjectId(inserted_id), **doc)
            for inserted_id, doc in zip(result.inserted_ids, pair)
        )
        return user_message, assistant_message

    async def list_messages(self, conversation_id: str) -> List[Message]:
        return await Message.find(Message.conversation_id == conversation_id).sort("+created_at", "+_id").to_list()

    async def create_documents(self, conversation_id: str, uploads: Sequence[UploadRef]) -> List[DocumentRecord]:
        records = []
        for upload in uploads:
            record = DocumentRecord(
                conversation_id=conversation_id,
                file_name=upload.file_name,
                content_ref=upload.content_ref,
                file_size=upload.file_size,
                content_type=upload.content_type,
            )
            await record.insert()
            records.append(record)
        return records

    async def list_documents(self, conversation_id: str) -> List[DocumentRecord]:
        return await DocumentRecord.find(DocumentRecord.conversation_id == conversation_id).sort("-created_at").to_list()

    async def count_documents(self, conversation_id: str) -> int:
        return await DocumentRecord.find(DocumentRecord.conversation_id == conversation_id).count()

    async def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        oid = _oid(document_id)
        if oid is None:
            return None
        return await DocumentRecord.get(oid)

    async def get_documents(self, document_ids: Sequence[str]) -> List[DocumentRecord]:
        oids = [oid for oid in (_oid(i) for i in document_ids) if oid is not None]
        if not oids:
            return []
        return await DocumentRecord.find({"_id": {"$in": oids}}).to_list()

    async def set_document_status(self, document_id: str, status: DocumentStatus) -> bool:
        oid = _oid(document_id)
        if oid is None:
            return False
        result = await DocumentRecord.get_motor_collection().update_one(
            {"_id": oid, "status": DocumentStatus.PROCESSING.value},
            {"$set": {"status": status.value, "updated_at": utcnow()}},
        )
        return result.modified_count == 1

    async def fail_documents(self, document_ids: Sequence[str]) -> int:
        oids = [oid for oid in (_oid(i) for i in document_ids) if oid is not None]
        if not oids:
            return 0
        result = await DocumentRecord.get_motor_collection().update_many(
            {"_id": {"$in": oids}, "status": DocumentStatus.PROCESSING.value},
            {"$set": {"status": DocumentStatus.FAILED.value, "updated_at": utcnow()}},
        )
        return result.modified_count

    async def delete_document(self, document_id: str) -> None:
        document = await self.get_document(document_id)
        if document is not None:
            await document.delete()
