from fastapi import APIRouter, Depends
from typing import List

from docchat.chat.service import QAService
from docchat.dependencies import get_conversation_service, get_qa_service, get_user_id
from docchat.models.schemas import AnswerResponse, ConversationDetail, ConversationOut, QuestionRequest
from docchat.services.conversations import ConversationService

router = APIRouter(prefix="/chat", tags=["Chat"])

@router.post("", response_model=ConversationOut)
async def create_conversation(
    user_id: str = Depends(get_user_id),
    conversations: ConversationService = Depends(get_conversation_service),
):
    return ConversationOut.from_record(await conversations.create(user_id))

@router.get("", response_model=List[ConversationOut])
async def list_conversations(
    user_id: str = Depends(get_user_id),
    conversations: ConversationService = Depends(get_conversation_service),
):
    return [ConversationOut.from_record(c) for c in await conversations.list_for_user(user_id)]

@router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    conversations: ConversationService = Depends(get_conversation_service),
):
    return await conversations.detail(conversation_id, user_id)

@router.post("/{conversation_id}/question", response_model=AnswerResponse)
async def ask_question(
    conversation_id: str,
    request: QuestionRequest,
    user_id: str = Depends(get_user_id),
    qa: QAService = Depends(get_qa_service),
):
    return await qa.answer(conversation_id, request.question, user_id=user_id)
