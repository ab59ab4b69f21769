"""Offline provider that echoes the latest prompt. Used when no API key is set."""

from forkchat.providers.base import GenerationRequest, GenerationResult, LLMProvider

PREVIEW_LENGTH = 200


class SimulatedProvider(LLMProvider):
    suggested_models = ["openrouter/auto"]

    @property
    def name(self) -> str:
        return "simulated"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        user_messages = [m for m in request.messages if m["role"] == "user"]
        preview = user_messages[-1]["content"] if user_messages else ""
        return GenerationResult(
            content=f"Simulated response ({request.model}): {preview[:PREVIEW_LENGTH]}",
            model=request.model,
            finish_reason="stop",
            latency_ms=0,
        )
