"""OpenRouter LLM provider: thin subclass of OpenAICompatibleProvider.

OpenRouter is an OpenAI-compatible API that routes to hundreds of models
via a single API key.
"""

from openai import AsyncOpenAI

from forkchat.providers.openai_compat import OpenAICompatibleProvider

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider(OpenAICompatibleProvider):
    """LLM provider backed by OpenRouter's API."""

    suggested_models = [
        "openrouter/auto",
        "anthropic/claude-3.5-sonnet",
        "openai/gpt-4o-mini",
        "google/gemini-2.0-flash-001",
    ]

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        app_url: str = "http://localhost:5173",
        app_title: str = "forkchat",
    ) -> None:
        if client is not None:
            super().__init__(client)
        else:
            super().__init__(
                AsyncOpenAI(
                    api_key=api_key,
                    base_url=OPENROUTER_BASE_URL,
                    default_headers={
                        "HTTP-Referer": app_url,
                        "X-Title": app_title,
                    },
                )
            )

    @property
    def name(self) -> str:
        return "openrouter"
