"""Tests for GenerationService: draft lifecycle, context assembly, concurrency."""

import asyncio

import pytest

from forkchat.generation.service import GenerationService
from forkchat.providers.base import GenerationRequest, GenerationResult, LLMProvider, ProviderError
from forkchat.providers.registry import ProviderNotFoundError
from forkchat.store import LocalNodeStore, StoreUnavailableError
from forkchat.trees.service import TreeService
from tests.fixtures import create_completed_root, create_scenario_tree


class ExplodingProvider(LLMProvider):
    @property
    def name(self) -> str:
        return "exploding"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        raise RuntimeError("socket closed")


class NodeWritesFailStore(LocalNodeStore):
    async def put(self, node):
        raise StoreUnavailableError("local", "disk full")


async def _until(predicate, attempts: int = 500) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition never became true")


class TestRootGeneration:
    async def test_root_with_prompt_completes(self, tree_service, gen_service):
        root = await gen_service.create_root(None, "hello")
        assert root.status == "processing"

        done = await gen_service.wait(root.node_id)

        assert done.status == "completed"
        assert done.response == "Fake response to: hello"
        conversation = await tree_service.get_conversation(root.conversation_id)
        assert conversation.title == "hello"

    async def test_root_without_prompt_then_submit(self, tree_service, gen_service):
        conversation = await tree_service.create_conversation("Empty")
        root = await gen_service.create_root(conversation.conversation_id)
        assert root.status == "idle"
        assert gen_service.pending == []

        await gen_service.submit(root.node_id, "hello")
        done = await gen_service.wait(root.node_id)

        assert done.status == "completed"
        assert done.prompt == "hello"

    async def test_unknown_provider_writes_nothing(self, tree_service, gen_service):
        conversation = await tree_service.create_conversation()
        with pytest.raises(ProviderNotFoundError):
            await gen_service.create_root(
                conversation.conversation_id, "hello", provider="nonexistent"
            )
        assert await tree_service.store.list_nodes(conversation.conversation_id) == []

    async def test_failed_root_write_leaves_no_conversation(self, providers):
        tree_service = TreeService(
            NodeWritesFailStore(), default_model="test-model", default_provider="fake"
        )
        service = GenerationService(tree_service)

        with pytest.raises(StoreUnavailableError):
            await service.create_root(None, "hello")

        assert await tree_service.list_conversations() == []
        assert service.pending == []

    async def test_failed_root_write_keeps_existing_conversation(self, providers):
        tree_service = TreeService(
            NodeWritesFailStore(), default_model="test-model", default_provider="fake"
        )
        service = GenerationService(tree_service)
        conversation = await tree_service.create_conversation("Kept")

        with pytest.raises(StoreUnavailableError):
            await service.create_root(conversation.conversation_id, "hello")

        assert await tree_service.list_conversations() == [conversation]


class TestBranchGeneration:
    async def test_scenario_tree(self, tree_service, gen_service):
        tree = await create_scenario_tree(tree_service, gen_service)
        c1 = tree["C1"]
        assert c1.status == "completed"
        assert c1.depth == 1
        assert c1.response == "Fake response to: tell me more"
        path = await tree_service.get_lineage(c1.node_id)
        assert [n.node_id for n in path] == [tree["R"].node_id, c1.node_id]

    async def test_context_is_lineage_then_new_prompt(self, tree_service, gen_service, providers):
        tree = await create_scenario_tree(tree_service, gen_service)

        g = await gen_service.branch(tree["C1"].node_id, "follow-up")
        await gen_service.wait(g.node_id)

        request = providers["fake"].requests[-1]
        assert request.model == "test-model"
        assert request.messages == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "Fake response to: hello"},
            {"role": "user", "content": "tell me more"},
            {"role": "assistant", "content": "Fake response to: tell me more"},
            {"role": "user", "content": "follow-up"},
        ]

    async def test_edit_as_branch_uses_siblings_context(self, tree_service, gen_service, providers):
        tree = await create_scenario_tree(tree_service, gen_service)

        edited = await gen_service.edit_as_branch(tree["C1"].node_id, "tell me less")
        done = await gen_service.wait(edited.node_id)

        assert done.parent_id == tree["R"].node_id
        assert done.response == "Fake response to: tell me less"
        assert providers["fake"].requests[-1].messages == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "Fake response to: hello"},
            {"role": "user", "content": "tell me less"},
        ]

    async def test_submit_clone(self, tree_service, gen_service):
        tree = await create_scenario_tree(tree_service, gen_service)
        clone = await tree_service.clone(tree["C1"].node_id)

        await gen_service.submit(clone.node_id)
        done = await gen_service.wait(clone.node_id)

        assert done.status == "completed"
        assert done.response == "Fake response to: tell me more"
        assert await tree_service.get_node(tree["C1"].node_id) == tree["C1"]


class TestFailure:
    async def test_regenerate_failure_marks_draft_error(self, tree_service, gen_service):
        tree = await create_scenario_tree(tree_service, gen_service)
        c1 = tree["C1"]

        d = await gen_service.regenerate(c1.node_id, provider="failing")
        assert d.status == "processing"
        assert d.parent_id == tree["R"].node_id
        assert d.prompt == c1.prompt

        with pytest.raises(ProviderError) as exc_info:
            await gen_service.wait(d.node_id)
        assert exc_info.value.node_id == d.node_id
        assert exc_info.value.message == "upstream unavailable"

        failed = await tree_service.get_node(d.node_id)
        assert failed.status == "error"
        assert failed.response is None
        assert failed.error == "upstream unavailable"
        assert await tree_service.get_node(c1.node_id) == c1

    async def test_failed_draft_can_be_regenerated(self, tree_service, gen_service):
        tree = await create_scenario_tree(tree_service, gen_service)
        d = await gen_service.regenerate(tree["C1"].node_id, provider="failing")
        with pytest.raises(ProviderError):
            await gen_service.wait(d.node_id)

        retry = await gen_service.regenerate(d.node_id, provider="fake")
        done = await gen_service.wait(retry.node_id)

        assert done.status == "completed"
        siblings = await tree_service.get_siblings(tree["C1"].node_id)
        assert [s.node_id for s in siblings] == [tree["C1"].node_id, d.node_id, retry.node_id]

    async def test_unexpected_exception_still_resolves_draft(self, tree_service, providers):
        service = GenerationService(tree_service, provider_lookup=lambda name: ExplodingProvider())
        root = await service.create_root(None, "hello")

        with pytest.raises(ProviderError, match="socket closed"):
            await service.wait(root.node_id)
        assert (await tree_service.get_node(root.node_id)).status == "error"

    async def test_failed_turn_is_left_out_of_context(self, tree_service, gen_service, providers):
        root = await create_completed_root(tree_service, gen_service)
        bad = await gen_service.branch(root.node_id, "broken", provider="failing")
        with pytest.raises(ProviderError):
            await gen_service.wait(bad.node_id)

        follow = await gen_service.branch(bad.node_id, "next", provider="fake")
        await gen_service.wait(follow.node_id)

        assert providers["fake"].requests[-1].messages == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "Fake response to: hello"},
            {"role": "user", "content": "next"},
        ]

    async def test_looping_ancestry_marks_draft_error(self, tree_service, gen_service):
        root = await create_completed_root(tree_service, gen_service)
        child = await gen_service.branch(root.node_id, "more")
        child = await gen_service.wait(child.node_id)
        # Point the root at its own child so the parent chain loops.
        await tree_service.store.put(root.model_copy(update={"parent_id": child.node_id}))

        draft = await gen_service.branch(child.node_id, "again")

        with pytest.raises(ProviderError, match="cycle"):
            await gen_service.wait(draft.node_id)
        failed = await tree_service.get_node(draft.node_id)
        assert failed.status == "error"
        assert gen_service.pending == []


class TestConcurrency:
    async def test_other_operations_proceed_while_generating(
        self, tree_service, gen_service, providers
    ):
        tree = await create_scenario_tree(tree_service, gen_service)
        gated = providers["gated"]

        draft = await gen_service.branch(tree["R"].node_id, "slow", provider="gated")
        await _until(lambda: gated.started == 1)

        removed = await tree_service.delete_subtree(tree["C1"].node_id)
        assert removed == {tree["C1"].node_id}
        in_flight = await tree_service.get_node(draft.node_id)
        assert in_flight.status == "processing"
        assert gen_service.pending == [draft.node_id]

        gated.release()
        done = await gen_service.wait(draft.node_id)
        assert done.status == "completed"
        assert done.response == "Gated response"
        assert gen_service.pending == []

    async def test_deleting_in_flight_draft(self, tree_service, gen_service, providers):
        root = await create_completed_root(tree_service, gen_service)
        gated = providers["gated"]

        draft = await gen_service.branch(root.node_id, "slow", provider="gated")
        await _until(lambda: gated.started == 1)
        await tree_service.delete_subtree(draft.node_id)

        gated.release()
        assert await gen_service.wait(draft.node_id) is None
        assert await tree_service.store.get(draft.node_id) is None
        assert await tree_service.get_children(root.node_id) == []

    async def test_cancelled_waiter_does_not_cancel_generation(
        self, tree_service, gen_service, providers
    ):
        root = await create_completed_root(tree_service, gen_service)
        gated = providers["gated"]
        draft = await gen_service.branch(root.node_id, "slow", provider="gated")

        waiter = asyncio.create_task(gen_service.wait(draft.node_id))
        await _until(lambda: gated.started == 1)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        gated.release()
        done = await gen_service.wait(draft.node_id)
        assert done.status == "completed"

    async def test_aclose_lets_pending_generations_finish(
        self, tree_service, gen_service, providers
    ):
        root = await create_completed_root(tree_service, gen_service)
        gated = providers["gated"]
        drafts = [
            await gen_service.branch(root.node_id, f"slow {i}", provider="gated")
            for i in range(3)
        ]

        gated.release()
        await gen_service.aclose()

        for draft in drafts:
            assert (await tree_service.get_node(draft.node_id)).status == "completed"

    async def test_wait_without_task_reads_store(self, tree_service, gen_service):
        root = await create_completed_root(tree_service, gen_service)
        assert (await gen_service.wait(root.node_id)).status == "completed"
        assert await gen_service.wait("missing") is None
