"""Shared base class for OpenAI-compatible LLM providers.

OpenAIProvider and OpenRouterProvider are thin subclasses that differ only
in client configuration.
"""

import time
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from forkchat.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    ProviderError,
)


class OpenAICompatibleProvider(LLMProvider):
    """Base provider for any API that speaks the OpenAI chat completions protocol."""

    def __init__(self, client: AsyncOpenAI) -> None:
        self._client = client

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        params = self._build_params(request)
        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(**params)
        except OpenAIError as e:
            raise ProviderError(self.name, str(e)) from e
        latency_ms = int((time.monotonic() - start) * 1000)

        if not response.choices:
            raise ProviderError(self.name, "response contained no choices")
        choice = response.choices[0]
        content = (choice.message.content or "").strip()

        usage = None
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens,
            }

        return GenerationResult(
            content=content,
            model=response.model,
            finish_reason=choice.finish_reason,
            usage=usage,
            latency_ms=latency_ms,
            raw_response=response.model_dump(),
        )

    def _build_params(self, request: GenerationRequest) -> dict[str, Any]:
        return {
            "model": request.model,
            "messages": request.messages,
            "max_tokens": request.max_tokens,
        }
