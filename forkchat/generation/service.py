"""Generation service: drives drafts from processing to completed or error.

Each operation creates its draft through TreeService (under the scope lock),
then runs the provider call in a background task that holds no lock. The
task always resolves the draft, even if whoever started it has gone away.
"""

import asyncio
import logging
from collections.abc import Callable

from forkchat.models import Node
from forkchat.providers.base import GenerationRequest, LLMProvider, ProviderError
from forkchat.providers.registry import get_provider
from forkchat.trees.index import CorruptTreeError
from forkchat.trees.lineage import build_messages
from forkchat.trees.service import NodeNotFoundError, TreeService

logger = logging.getLogger(__name__)


class GenerationService:
    """Orchestrates draft creation, the provider call, and status updates."""

    def __init__(
        self,
        tree_service: TreeService,
        *,
        provider_lookup: Callable[[str], LLMProvider] = get_provider,
    ) -> None:
        self._tree_service = tree_service
        self._provider_lookup = provider_lookup
        self._tasks: dict[str, asyncio.Task[Node | None]] = {}

    @property
    def pending(self) -> list[str]:
        """Ids of drafts whose generation is still running."""
        return list(self._tasks)

    async def create_root(
        self,
        conversation_id: str | None = None,
        prompt: str | None = None,
        *,
        model: str | None = None,
        provider: str | None = None,
        title: str | None = None,
    ) -> Node:
        """Create the root of a conversation, making the conversation if needed.

        A prompt starts generation right away; without one the root is an
        idle placeholder.
        """
        llm = self._resolve_provider(provider) if prompt and prompt.strip() else None
        created = conversation_id is None
        if created:
            conversation = await self._tree_service.create_conversation(title or prompt)
            conversation_id = conversation.conversation_id
        try:
            root = await self._tree_service.create_root(
                conversation_id,
                prompt,
                model=model,
                provider=llm.name if llm else provider,
            )
        except Exception:
            # A conversation made here must not outlive its failed root.
            if created:
                await self._tree_service.delete_conversation(conversation_id)
            raise
        if llm is not None:
            await self._dispatch(root, llm)
        return root

    async def branch(
        self,
        parent_id: str,
        prompt: str,
        *,
        model: str | None = None,
        provider: str | None = None,
        conversation_id: str | None = None,
    ) -> Node:
        """Continue from parent_id with a new prompt."""
        parent = await self._tree_service.get_node(parent_id)
        llm = self._resolve_provider(provider or parent.provider)
        draft = await self._tree_service.create_branch(
            parent_id,
            prompt,
            model=model,
            provider=llm.name,
            conversation_id=conversation_id,
        )
        await self._dispatch(draft, llm)
        return draft

    async def regenerate(
        self,
        node_id: str,
        *,
        model: str | None = None,
        provider: str | None = None,
    ) -> Node:
        """Ask again: a sibling draft with node_id's prompt, node_id untouched."""
        source = await self._tree_service.get_node(node_id)
        llm = self._resolve_provider(provider or source.provider)
        draft = await self._tree_service.create_regeneration(
            node_id, model=model, provider=llm.name
        )
        await self._dispatch(draft, llm)
        return draft

    async def edit_as_branch(
        self,
        node_id: str,
        prompt: str,
        *,
        model: str | None = None,
        provider: str | None = None,
    ) -> Node:
        """Fork node_id with an edited prompt and generate for the new branch."""
        source = await self._tree_service.get_node(node_id)
        llm = self._resolve_provider(provider or source.provider)
        draft = await self._tree_service.create_edit_branch(
            node_id, prompt, model=model, provider=llm.name
        )
        await self._dispatch(draft, llm)
        return draft

    async def submit(
        self,
        node_id: str,
        prompt: str | None = None,
        *,
        model: str | None = None,
        provider: str | None = None,
    ) -> Node:
        """Send an idle node (a clone or an empty root) for generation."""
        source = await self._tree_service.get_node(node_id)
        llm = self._resolve_provider(provider or source.provider)
        draft = await self._tree_service.begin_submission(
            node_id, prompt, model=model, provider=llm.name
        )
        await self._dispatch(draft, llm)
        return draft

    async def wait(self, node_id: str) -> Node | None:
        """Wait for node_id's generation, if any, and return the node.

        Cancelling the waiter does not cancel the generation. Returns None if
        the node was deleted. Raises ProviderError if the draft ended in error.
        """
        task = self._tasks.get(node_id)
        if task is not None:
            node = await asyncio.shield(task)
        else:
            node = await self._tree_service.store.get(node_id)
        if node is not None and node.status == "error":
            raise ProviderError(node.provider, node.error or "generation failed", node.node_id)
        return node

    async def aclose(self) -> None:
        """Let every in-flight generation resolve. Called at shutdown."""
        tasks = list(self._tasks.values())
        if tasks:
            logger.info("Waiting for %d pending generation(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    def _resolve_provider(self, name: str | None) -> LLMProvider:
        return self._provider_lookup(name or self._tree_service.default_provider)

    async def _dispatch(self, draft: Node, llm: LLMProvider) -> None:
        task = asyncio.create_task(
            self._run(draft, llm), name=f"generate-{draft.node_id}"
        )
        self._tasks[draft.node_id] = task
        task.add_done_callback(lambda t, node_id=draft.node_id: self._on_done(node_id, t))

    async def build_context(self, draft: Node) -> list[dict[str, str]]:
        """Messages for a draft: its ancestors' finished turns, then its prompt."""
        path = await self._tree_service.get_lineage(draft.node_id)
        assert draft.prompt is not None
        # The last entry is the draft itself, which has no response yet.
        return build_messages(path[:-1], draft.prompt)

    async def _run(self, draft: Node, llm: LLMProvider) -> Node | None:
        node_id = draft.node_id
        try:
            messages = await self.build_context(draft)
        except NodeNotFoundError:
            logger.info("Draft %s was deleted before generation started", node_id)
            return None
        except CorruptTreeError as e:
            logger.warning("Cannot build context for %s: %s", node_id, e)
            return await self._tree_service.fail(node_id, str(e))
        request = GenerationRequest(model=draft.model, messages=messages)
        try:
            result = await llm.generate(request)
        except ProviderError as e:
            logger.warning("Generation for %s failed: %s", node_id, e)
            return await self._tree_service.fail(node_id, e.message)
        except Exception as e:
            # Anything a provider raises must still resolve the draft.
            logger.exception("Generation for %s raised unexpectedly", node_id)
            return await self._tree_service.fail(node_id, str(e) or type(e).__name__)
        logger.info(
            "Generation for %s completed (%s, %s ms)", node_id, result.model, result.latency_ms
        )
        return await self._tree_service.complete(node_id, result.content)

    def _on_done(self, node_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(node_id, None)
        if task.cancelled():
            logger.warning("Generation for %s was cancelled; node left processing", node_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Could not record generation outcome for %s: %s", node_id, exc)
