"""Shared test helpers: fake providers and node builders."""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from forkchat.generation.service import GenerationService
from forkchat.models import Conversation, Node
from forkchat.providers.base import (
    GenerationRequest,
    GenerationResult,
    LLMProvider,
    ProviderError,
)
from forkchat.trees.service import TreeService

BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)


class FakeProvider(LLMProvider):
    """Answers every prompt with a canned echo and records the requests."""

    def __init__(self) -> None:
        self.requests: list[GenerationRequest] = []

    @property
    def name(self) -> str:
        return "fake"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        prompt = request.messages[-1]["content"]
        return GenerationResult(
            content=f"Fake response to: {prompt}",
            model=request.model,
            finish_reason="stop",
            latency_ms=1,
        )


class FailingProvider(LLMProvider):
    @property
    def name(self) -> str:
        return "failing"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        raise ProviderError(self.name, "upstream unavailable")


class GatedProvider(LLMProvider):
    """Blocks every call until release() is called."""

    def __init__(self) -> None:
        self._gate = asyncio.Event()
        self.started = 0

    @property
    def name(self) -> str:
        return "gated"

    def release(self) -> None:
        self._gate.set()

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.started += 1
        await self._gate.wait()
        return GenerationResult(content="Gated response", model=request.model)


def make_conversation(conversation_id: str | None = None, title: str = "Test") -> Conversation:
    return Conversation(conversation_id=conversation_id or str(uuid4()), title=title)


def make_node(
    conversation_id: str,
    parent: Node | None = None,
    *,
    node_id: str | None = None,
    parent_id: str | None = None,
    prompt: str | None = "Hello",
    response: str | None = "Hi there",
    offset: int = 0,
    **overrides: Any,
) -> Node:
    """Build a Node directly, bypassing TreeService validation.

    `offset` (seconds after BASE_TIME) controls creation order. Pass
    `parent_id` without `parent` to build a dangling reference.
    """
    node_id = node_id or str(uuid4())
    created = BASE_TIME + timedelta(seconds=offset)
    fields: dict[str, Any] = {
        "node_id": node_id,
        "conversation_id": conversation_id,
        "parent_id": parent.node_id if parent else parent_id,
        "root_id": parent.root_id if parent else node_id,
        "depth": parent.depth + 1 if parent else (1 if parent_id else 0),
        "prompt": prompt,
        "response": response,
        "model": "test-model",
        "provider": "fake",
        "status": "completed" if response else "idle",
        "created_at": created,
        "updated_at": created,
    }
    fields.update(overrides)
    return Node(**fields)


async def create_completed_root(
    tree_service: TreeService,
    gen_service: GenerationService,
    prompt: str = "hello",
    provider: str = "fake",
) -> Node:
    """Create a conversation whose root has finished generating."""
    root = await gen_service.create_root(None, prompt, provider=provider)
    return await gen_service.wait(root.node_id)


async def create_scenario_tree(
    tree_service: TreeService, gen_service: GenerationService
) -> dict[str, Node]:
    """root R ("hello") -> C1 ("tell me more"), both completed."""
    root = await create_completed_root(tree_service, gen_service)
    c1 = await gen_service.branch(root.node_id, "tell me more")
    c1 = await gen_service.wait(c1.node_id)
    return {"R": root, "C1": c1}
