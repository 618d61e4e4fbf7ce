import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import openai
from litellm import acompletion

from docchat.errors import TransientError, bounded

logger = logging.getLogger(__name__)


class CompletionClient(ABC):
    """Single-turn text generation; no conversation state is kept."""

    @abstractmethod
    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str: ...


class LiteLLMCompletionClient(CompletionClient):
    def __init__(self, model: str, api_key: str, timeout: float = 60.0):
        # Ensure correct prefix for LiteLLM
        if "gemini" in model.lower() and not model.startswith("gemini/"):
            model = f"gemini/{model}"
        self.model = model
        self.api_key = api_key
        self.timeout = timeout

    async def get_response(self, messages: List[Dict[str, str]]) -> str:
        try:
            response = await bounded(
                acompletion(
                    model=self.model,
                    messages=messages,
                    api_key=self.api_key,
                    timeout=self.timeout,
                ),
                self.timeout,
                "completion",
            )
        except openai.APIError as e:
            # litellm provider exceptions all subclass openai.APIError
            raise TransientError(f"Completion request failed: {type(e).__name__}") from e
        return response.choices[0].message.content or ""

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return await self.get_response(messages)
