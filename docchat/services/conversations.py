from typing import List, Optional

from docchat.db.store import DocumentStore
from docchat.errors import NotFoundError
from docchat.models.core import Conversation
from docchat.models.schemas import ConversationDetail, ConversationOut, DocumentOut, MessageOut


class ConversationService:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def create(self, user_id: str) -> Conversation:
        return await self.store.create_conversation(user_id)

    async def list_for_user(self, user_id: str) -> List[Conversation]:
        return await self.store.list_conversations(user_id)

    async def detail(self, conversation_id: str, user_id: Optional[str] = None) -> ConversationDetail:
        conversation = await self.store.get_conversation(conversation_id, user_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        documents = await self.store.list_documents(conversation_id)
        messages = await self.store.list_messages(conversation_id)
        return ConversationDetail(
            **ConversationOut.from_record(conversation).model_dump(),
            documents=[DocumentOut.from_record(d) for d in documents],
            messages=[MessageOut.from_record(m) for m in messages],
        )
