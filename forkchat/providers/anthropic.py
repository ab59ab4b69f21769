"""Anthropic (Claude) LLM provider implementation."""

import time
from typing import Any

from anthropic import AnthropicError, AsyncAnthropic

from forkchat.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    ProviderError,
)


class AnthropicProvider(LLMProvider):
    """LLM provider backed by Anthropic's Messages API."""

    suggested_models = [
        "claude-sonnet-4-5-20250929",
        "claude-haiku-4-5-20251001",
    ]

    def __init__(self, client: AsyncAnthropic) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "anthropic"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        params = self._build_params(request)
        start = time.monotonic()
        try:
            response = await self._client.messages.create(**params)
        except AnthropicError as e:
            raise ProviderError(self.name, str(e)) from e
        latency_ms = int((time.monotonic() - start) * 1000)

        return GenerationResult(
            content=self._extract_text(response),
            model=response.model,
            finish_reason=response.stop_reason,
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
            latency_ms=latency_ms,
            raw_response=response.model_dump(),
        )

    @staticmethod
    def _build_params(request: GenerationRequest) -> dict[str, Any]:
        return {
            "model": request.model,
            "messages": request.messages,
            "max_tokens": request.max_tokens,
        }

    @staticmethod
    def _extract_text(response: Any) -> str:
        """Join the text blocks of a Messages API response."""
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
