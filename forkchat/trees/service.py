"""Tree service: branch operations and cascade deletion over a NodeStore.

Every mutation of a conversation runs under that conversation's lock and
drops its cached TreeIndex before the lock is released. Structural checks
happen under the lock, before anything is written.
"""

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from forkchat.models import Conversation, Node, NodeStatus, utcnow
from forkchat.store.base import NodeStore
from forkchat.trees.index import TreeIndex
from forkchat.trees.lineage import lineage
from forkchat.utils.text import fork_title, summarize_prompt, title_for_prompt

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "openrouter/auto"
DEFAULT_PROVIDER = "simulated"


class ScopeLocks:
    """One asyncio.Lock per conversation id.

    A lock lives only while some task holds or waits for it, so two tasks
    of one scope always share the same lock.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        self._users[conversation_id] = self._users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[conversation_id] -= 1
            if not self._users[conversation_id]:
                del self._users[conversation_id]
                del self._locks[conversation_id]


class TreeService:
    """Creates, edits and deletes nodes; serves tree queries from an index cache."""

    def __init__(
        self,
        store: NodeStore,
        *,
        default_model: str = DEFAULT_MODEL,
        default_provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self._store = store
        self._locks = ScopeLocks()
        self._indexes: dict[str, TreeIndex] = {}
        # Stamps are never reused, so a dropped stamp cannot match a later one.
        self._stamps = itertools.count(1)
        self._versions: dict[str, int] = {}
        self._last_created = datetime.min.replace(tzinfo=UTC)
        self.default_model = default_model
        self.default_provider = default_provider

    @property
    def store(self) -> NodeStore:
        return self._store

    # -- Conversations --

    async def create_conversation(self, title: str | None = None) -> Conversation:
        title = title.strip() if title else ""
        conversation = Conversation(
            conversation_id=str(uuid4()),
            title=title or "New Conversation",
        )
        return await self._store.create_conversation(conversation)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def list_conversations(self) -> list[Conversation]:
        return await self._store.list_conversations()

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._mutating(conversation_id):
            await self.get_conversation(conversation_id)
            await self._store.delete_conversation(conversation_id)

    # -- Queries --

    async def index_for(self, conversation_id: str) -> TreeIndex:
        """Cached index of one conversation, rebuilt after any mutation of it."""
        cached = self._indexes.get(conversation_id)
        if cached is not None:
            return cached
        version = self._versions.get(conversation_id)
        if version is None:
            version = self._versions[conversation_id] = next(self._stamps)
        index = TreeIndex(await self._store.list_nodes(conversation_id))
        # A mutation that landed while we were listing makes this index stale.
        if self._versions.get(conversation_id) == version:
            self._indexes[conversation_id] = index
        return index

    async def get_node(self, node_id: str) -> Node:
        node = await self._store.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    async def get_lineage(self, node_id: str) -> list[Node]:
        """Root-to-node path; truncated at a dangling parent reference."""
        index = await self._index_containing(node_id)
        return lineage(index, node_id)

    async def get_children(self, node_id: str) -> list[Node]:
        index = await self._index_containing(node_id)
        return index.children_of(node_id)

    async def get_siblings(self, node_id: str) -> list[Node]:
        index = await self._index_containing(node_id)
        return index.siblings_of(node_id)

    async def get_branch_tip(self, node_id: str) -> Node:
        index = await self._index_containing(node_id)
        tip = index.branch_tip(node_id)
        assert tip is not None
        return tip

    # -- Branch operations --

    async def create_root(
        self,
        conversation_id: str,
        prompt: str | None = None,
        *,
        model: str | None = None,
        provider: str | None = None,
    ) -> Node:
        """Create the first node of an empty conversation.

        With a prompt the root is a draft awaiting generation; without one it
        is an idle placeholder that can be submitted later.
        """
        prompt = prompt.strip() if prompt else None
        async with self._mutating(conversation_id):
            await self.get_conversation(conversation_id)
            index = await self.index_for(conversation_id)
            roots = index.roots()
            if roots:
                raise RootAlreadyExistsError(conversation_id, roots[0].node_id)

            node_id = str(uuid4())
            now = self._next_timestamp()
            node = Node(
                node_id=node_id,
                conversation_id=conversation_id,
                parent_id=None,
                root_id=node_id,
                depth=0,
                prompt=prompt,
                title=title_for_prompt(prompt) if prompt else "Root",
                summary=summarize_prompt(prompt) if prompt else "Root",
                model=model or self.default_model,
                provider=provider or self.default_provider,
                status="processing" if prompt else "idle",
                created_at=now,
                updated_at=now,
            )
            return await self._store.put(node)

    async def create_branch(
        self,
        parent_id: str,
        prompt: str,
        *,
        model: str | None = None,
        provider: str | None = None,
        conversation_id: str | None = None,
    ) -> Node:
        """Create a draft child of parent_id that continues with a new prompt."""
        prompt = self._require_prompt(parent_id, prompt)
        scope = (await self.get_node(parent_id)).conversation_id
        if conversation_id is not None and conversation_id != scope:
            raise CrossScopeParentError(parent_id, conversation_id)

        async with self._mutating(scope):
            parent = await self.get_node(parent_id)
            node = self._new_node(
                parent,
                prompt=prompt,
                model=model or parent.model,
                provider=provider or parent.provider,
                status="processing",
            )
            return await self._store.put(node)

    async def clone(self, node_id: str) -> Node:
        """Copy node_id's prompt into a new idle sibling without a response."""
        scope = (await self.get_node(node_id)).conversation_id
        async with self._mutating(scope):
            source = await self.get_node(node_id)
            parent = await self._require_parent(source)
            node = self._new_node(
                parent,
                prompt=source.prompt,
                title=fork_title(source.title),
                summary=source.summary,
                model=source.model,
                provider=source.provider,
                status="idle",
            )
            return await self._store.put(node)

    async def create_regeneration(
        self,
        node_id: str,
        *,
        model: str | None = None,
        provider: str | None = None,
    ) -> Node:
        """Create a sibling draft with node_id's prompt; node_id itself is kept."""
        scope = (await self.get_node(node_id)).conversation_id
        async with self._mutating(scope):
            source = await self.get_node(node_id)
            if not source.prompt:
                raise EmptyPromptError(node_id)
            parent = await self._require_parent(source)
            node = self._new_node(
                parent,
                prompt=source.prompt,
                model=model or source.model,
                provider=provider or source.provider,
                status="processing",
            )
            return await self._store.put(node)

    async def create_edit_branch(
        self,
        node_id: str,
        prompt: str,
        *,
        model: str | None = None,
        provider: str | None = None,
    ) -> Node:
        """Create a sibling draft of node_id carrying an edited prompt."""
        prompt = self._require_prompt(node_id, prompt)
        scope = (await self.get_node(node_id)).conversation_id
        async with self._mutating(scope):
            source = await self.get_node(node_id)
            parent = await self._require_parent(source)
            node = self._new_node(
                parent,
                prompt=prompt,
                model=model or source.model,
                provider=provider or source.provider,
                status="processing",
            )
            return await self._store.put(node)

    async def begin_submission(
        self,
        node_id: str,
        prompt: str | None = None,
        *,
        model: str | None = None,
        provider: str | None = None,
    ) -> Node:
        """Move an idle node (clone or placeholder root) to processing."""
        scope = (await self.get_node(node_id)).conversation_id
        async with self._mutating(scope):
            node = await self.get_node(node_id)
            if node.status != "idle":
                raise InvalidStatusError(node_id, node.status, "idle")
            prompt = self._require_prompt(node_id, prompt or node.prompt)
            updated = node.touched(
                prompt=prompt,
                title=title_for_prompt(prompt) if prompt != node.prompt else node.title,
                summary=summarize_prompt(prompt),
                model=model or node.model,
                provider=provider or node.provider,
                status="processing",
                error=None,
            )
            return await self._store.put(updated)

    async def edit_prompt(self, node_id: str, prompt: str) -> Node:
        """Replace a node's prompt in place. Its response is left as is.

        A draft still awaiting its response cannot be edited.
        """
        prompt = self._require_prompt(node_id, prompt)
        scope = (await self.get_node(node_id)).conversation_id
        async with self._mutating(scope):
            node = await self.get_node(node_id)
            if node.status == "processing":
                raise InvalidStatusError(node_id, node.status, "idle, completed or error")
            updated = node.touched(prompt=prompt, summary=summarize_prompt(prompt))
            return await self._store.put(updated)

    # -- Generation outcome --

    async def complete(self, node_id: str, response: str) -> Node | None:
        """processing -> completed. Returns None if the draft has been deleted."""
        return await self._resolve(node_id, "completed", response=response, error=None)

    async def fail(self, node_id: str, error: str) -> Node | None:
        """processing -> error. The draft is kept so it can be regenerated."""
        return await self._resolve(node_id, "error", response=None, error=error)

    async def _resolve(self, node_id: str, status: NodeStatus, **changes) -> Node | None:
        node = await self._store.get(node_id)
        if node is None:
            logger.info("Draft %s was deleted before it resolved to %s", node_id, status)
            return None
        async with self._mutating(node.conversation_id):
            node = await self._store.get(node_id)
            if node is None:
                logger.info("Draft %s was deleted before it resolved to %s", node_id, status)
                return None
            if node.status != "processing":
                raise InvalidStatusError(node_id, node.status, "processing")
            return await self._store.put(node.touched(status=status, **changes))

    # -- Cascade deletion --

    async def delete_subtree(self, node_id: str) -> set[str]:
        """Delete node_id and all of its descendants. Returns the removed ids."""
        return await self._delete(node_id, include_self=True)

    async def clear_children(self, node_id: str) -> set[str]:
        """Delete every descendant of node_id, keeping node_id itself."""
        return await self._delete(node_id, include_self=False)

    async def _delete(self, node_id: str, *, include_self: bool) -> set[str]:
        scope = (await self.get_node(node_id)).conversation_id
        async with self._mutating(scope):
            await self.get_node(node_id)
            index = await self.index_for(scope)
            targets = index.descendants(node_id)
            if include_self:
                targets.add(node_id)
            await self._store.delete_many(targets)
        logger.info("Deleted %d node(s) under %s", len(targets), node_id)
        return targets

    # -- Helpers --

    @asynccontextmanager
    async def _mutating(self, conversation_id: str) -> AsyncIterator[None]:
        async with self._locks.hold(conversation_id):
            try:
                yield
            finally:
                self._invalidate(conversation_id)

    def _invalidate(self, conversation_id: str) -> None:
        # A build still holding the dropped stamp will not cache its index.
        self._versions.pop(conversation_id, None)
        self._indexes.pop(conversation_id, None)

    async def _index_containing(self, node_id: str) -> TreeIndex:
        node = await self.get_node(node_id)
        index = await self.index_for(node.conversation_id)
        if node_id not in index:
            raise NodeNotFoundError(node_id)
        return index

    async def _require_parent(self, node: Node) -> Node:
        """Parent of a non-root node. Siblings of a root would be second roots."""
        if node.parent_id is None:
            raise RootAlreadyExistsError(node.conversation_id, node.node_id)
        parent = await self._store.get(node.parent_id)
        if parent is None:
            raise NodeNotFoundError(node.parent_id)
        if parent.conversation_id != node.conversation_id:
            raise CrossScopeParentError(parent.node_id, node.conversation_id)
        return parent

    @staticmethod
    def _require_prompt(node_id: str, prompt: str | None) -> str:
        prompt = prompt.strip() if prompt else ""
        if not prompt:
            raise EmptyPromptError(node_id)
        return prompt

    def _next_timestamp(self) -> datetime:
        """Strictly increasing creation time, so sibling order is creation order."""
        now = max(utcnow(), self._last_created + timedelta(microseconds=1))
        self._last_created = now
        return now

    def _new_node(
        self,
        parent: Node,
        *,
        prompt: str | None,
        model: str,
        provider: str,
        status: NodeStatus,
        title: str | None = None,
        summary: str | None = None,
    ) -> Node:
        """A fresh child of parent; parent, root and depth all derive from it."""
        now = self._next_timestamp()
        return Node(
            node_id=str(uuid4()),
            conversation_id=parent.conversation_id,
            parent_id=parent.node_id,
            root_id=parent.root_id,
            depth=parent.depth + 1,
            prompt=prompt,
            title=title or title_for_prompt(prompt),
            summary=summary or summarize_prompt(prompt),
            model=model,
            provider=provider,
            status=status,
            created_at=now,
            updated_at=now,
        )


class ConversationNotFoundError(Exception):
    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class NodeNotFoundError(Exception):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class RootAlreadyExistsError(Exception):
    def __init__(self, conversation_id: str, root_id: str) -> None:
        self.conversation_id = conversation_id
        self.root_id = root_id
        super().__init__(
            f"Conversation {conversation_id} already has a root node: {root_id}"
        )


class CrossScopeParentError(Exception):
    def __init__(self, parent_id: str, conversation_id: str) -> None:
        self.parent_id = parent_id
        self.conversation_id = conversation_id
        super().__init__(
            f"Parent node {parent_id} does not belong to conversation {conversation_id}"
        )


class InvalidStatusError(Exception):
    def __init__(self, node_id: str, status: str, expected: str) -> None:
        self.node_id = node_id
        self.status = status
        self.expected = expected
        super().__init__(f"Node {node_id} is {status}, expected {expected}")


class EmptyPromptError(Exception):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Prompt is empty for node: {node_id}")
