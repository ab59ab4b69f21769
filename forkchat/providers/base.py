"""Abstract LLM provider interface and shared data types."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class GenerationRequest(BaseModel):
    """Everything a provider needs to make an API call."""

    model: str
    messages: list[dict[str, str]]
    max_tokens: int = 2048


class GenerationResult(BaseModel):
    """Full response from a provider after generation completes."""

    content: str
    model: str
    finish_reason: str | None = None
    usage: dict[str, int] | None = None
    latency_ms: int | None = None
    raw_response: dict[str, Any] | None = None


class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    suggested_models: list[str] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., 'openrouter')."""
        ...

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Send a non-streaming generation request. Returns the full result.

        Raises ProviderError when the backing API fails.
        """
        ...


class ProviderError(Exception):
    def __init__(self, provider: str, message: str, node_id: str | None = None) -> None:
        self.provider = provider
        self.message = message
        self.node_id = node_id
        super().__init__(f"Provider {provider} failed: {message}")
