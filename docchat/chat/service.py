"""Question answering over a conversation's documents.

``answer`` embeds the question, retrieves the closest chunks from the
conversation's namespace, asks the completion model to answer strictly
from them and persists the USER/ASSISTANT pair. The first answered
question also names the conversation in the background.
"""

import asyncio
import logging
from typing import Optional, Set

from docchat.db.store import DocumentStore
from docchat.errors import AdvisoryResult, InputValidationError, NotFoundError, describe
from docchat.models.schemas import AnswerResponse, MessageOut, Source
from docchat.retrieval.service import RetrievalService, SearchResult
from docchat.services.llm import CompletionClient

logger = logging.getLogger(__name__)

INSUFFICIENT_CONTEXT_SENTINEL = "Sorry, there is insufficient context in your documents to answer that question."
SENTINEL_MARKER = "insufficient context"

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions about the user's documents.\n\n"
    "IMPORTANT RULES:\n"
    "- Answer ONLY from the context provided with the question\n"
    "- Do not use external knowledge or make assumptions beyond what's explicitly stated\n"
    "- Reply in plain conversational text, without markdown, headings or lists\n"
    f"- If the context does not contain the answer, reply exactly: '{INSUFFICIENT_CONTEXT_SENTINEL}'\n"
)

TITLE_PROMPT = (
    "Write a short title (at most 6 words) for a conversation that starts with the question below. "
    "Reply with the title only, no quotes or punctuation at the end.\n\n"
    "Question: {question}"
)

MAX_TITLE_LENGTH = 60


def is_insufficient(answer: str) -> bool:
    return SENTINEL_MARKER in answer.lower()


def build_prompt(context: str, question: str) -> str:
    return f"Context:\n{context}\n\nQuestion: {question}"


def clean_title(raw: str) -> str:
    lines = [line for line in raw.strip().splitlines() if line.strip()]
    if not lines:
        return ""
    title = lines[0].strip().strip("\"'*#").strip().rstrip(".")
    return title[:MAX_TITLE_LENGTH].strip()


class QAService:
    def __init__(self, store: DocumentStore, retrieval: RetrievalService, llm: CompletionClient):
        self.store = store
        self.retrieval = retrieval
        self.llm = llm
        self._background: Set[asyncio.Task] = set()

    async def answer(self, conversation_id: str, question: str, user_id: Optional[str] = None) -> AnswerResponse:
        question = question.strip()
        if not question:
            raise InputValidationError("Question cannot be empty")

        # The single ownership check for this operation
        conversation = await self.store.get_conversation(conversation_id, user_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")

        # Embedding or completion failures raise TransientError here, before anything is persisted
        results = await self.retrieval.search(conversation_id, question)
        context = RetrievalService.build_context(results)
        answer = await self.llm.complete(build_prompt(context, question), system_prompt=SYSTEM_PROMPT)

        user_message, assistant_message = await self.store.add_message_pair(conversation_id, question, answer)

        if conversation.title is None:
            self._schedule(self.generate_title(conversation_id, question))

        # Citing sources for an answer the model declined to give is misleading
        sources = [] if is_insufficient(answer) else [self._source(r) for r in results]
        return AnswerResponse(
            user_message=MessageOut.from_record(user_message),
            assistant_message=MessageOut.from_record(assistant_message),
            sources=sources,
        )

    async def generate_title(self, conversation_id: str, question: str) -> AdvisoryResult:
        """Advisory: name the conversation after its first question.

        Never raises; the outcome is logged and returned.
        """
        try:
            title = clean_title(await self.llm.complete(TITLE_PROMPT.format(question=question)))
            if not title:
                return AdvisoryResult("conversation title", False, "model returned an empty title").log(logger)
            written = await self.store.set_title_if_missing(conversation_id, title)
        except Exception as e:
            return AdvisoryResult("conversation title", False, describe(e)).log(logger)
        detail = f"set to {title!r}" if written else "already set, left unchanged"
        return AdvisoryResult("conversation title", True, detail).log(logger)

    async def drain(self):
        """Wait for scheduled background work (title generation)."""
        if self._background:
            await asyncio.gather(*self._background)

    def _schedule(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    def _source(result: SearchResult) -> Source:
        return Source(
            file_name=result.metadata.get("fileName"),
            page=result.metadata.get("page"),
            preview=result.metadata.get("preview", ""),
            score=result.similarity,
        )
