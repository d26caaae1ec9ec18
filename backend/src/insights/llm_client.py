"""
OpenAI chat completion wrapper.

Isolates the SDK so generators can be tested with a stub client.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from src.config.settings import get_openai_api_key, get_openai_model

logger = logging.getLogger(__name__)

OPENAI_TIMEOUT_S = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60"))


class LLMError(Exception):
    """Raised when the completion request fails."""
    pass


class LLMNotConfiguredError(LLMError):
    pass


@dataclass
class CompletionResult:
    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def prompt_tokens(self) -> int:
        return self.usage.get("prompt_tokens", 0)

    @property
    def completion_tokens(self) -> int:
        return self.usage.get("completion_tokens", 0)

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)


class LLMClient:
    """Async chat completions against the configured OpenAI model."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self._api_key = api_key or get_openai_api_key()
        self.model = model or get_openai_model()
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise LLMNotConfiguredError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=OPENAI_TIMEOUT_S, max_retries=1)
        return self._client

    async def complete(
        self,
        prompt: str,
        temperature: float,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> CompletionResult:
        """
        Run one chat completion.

        Raises:
            LLMError: On API failure
        """
        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        request_kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            request_kwargs["max_tokens"] = max_tokens
        if json_mode:
            request_kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**request_kwargs)
        except OpenAIError as e:
            logger.warning("OpenAI completion failed", extra={"model": self.model, "error": str(e)})
            raise LLMError(f"OpenAI API error: {e}") from e

        content = ""
        if response.choices and response.choices[0].message:
            content = (response.choices[0].message.content or "").strip()

        usage = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens or 0,
                "completion_tokens": response.usage.completion_tokens or 0,
                "total_tokens": response.usage.total_tokens or 0,
            }
        return CompletionResult(content=content, model=self.model, usage=usage)
