"""FastAPI routes for conversations, tree queries, branching and deletion."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from forkchat.generation.service import GenerationService
from forkchat.models import Node
from forkchat.providers.base import ProviderError
from forkchat.providers.registry import ProviderNotFoundError
from forkchat.trees.schemas import (
    BranchRequest,
    ConversationDetailResponse,
    ConversationSummary,
    CreateConversationRequest,
    CreateRootRequest,
    DeleteResponse,
    EditBranchRequest,
    NodeResponse,
    PatchPromptRequest,
    RegenerateRequest,
    SubmitRequest,
)
from forkchat.trees.service import (
    ConversationNotFoundError,
    CrossScopeParentError,
    EmptyPromptError,
    InvalidStatusError,
    NodeNotFoundError,
    RootAlreadyExistsError,
    TreeService,
)

router = APIRouter(prefix="/api", tags=["trees"])

_DOMAIN_ERRORS = (
    ConversationNotFoundError,
    NodeNotFoundError,
    RootAlreadyExistsError,
    CrossScopeParentError,
    InvalidStatusError,
    EmptyPromptError,
    ProviderNotFoundError,
)


def get_tree_service() -> TreeService:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("TreeService not initialized")


def get_generation_service() -> GenerationService:
    """Dependency placeholder, replaced at app startup."""
    raise RuntimeError("GenerationService not initialized")


def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, (ConversationNotFoundError, NodeNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (RootAlreadyExistsError, InvalidStatusError)):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


async def _responses(service: TreeService, nodes: list[Node]) -> list[NodeResponse]:
    """Attach sibling position to each node, computed from the current index."""
    if not nodes:
        return []
    index = await service.index_for(nodes[0].conversation_id)
    sibling_info = index.sibling_info()
    return [NodeResponse.from_node(n, sibling_info) for n in nodes]


async def _response(service: TreeService, node: Node) -> NodeResponse:
    return (await _responses(service, [node]))[0]


async def _finish(
    service: TreeService,
    gen_service: GenerationService,
    draft: Node,
    wait: bool,
) -> NodeResponse:
    """Return the draft, or with wait=true the node once generation resolved."""
    if not wait:
        return await _response(service, draft)
    try:
        node = await gen_service.wait(draft.node_id)
    except ProviderError as e:
        raise HTTPException(
            status_code=502,
            detail={"message": e.message, "node_id": e.node_id},
        )
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {draft.node_id}")
    return await _response(service, node)


# -- Conversations --


@router.post("/conversations", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    request: CreateConversationRequest,
    service: TreeService = Depends(get_tree_service),
) -> ConversationSummary:
    conversation = await service.create_conversation(request.title)
    return ConversationSummary.from_conversation(conversation)


@router.get("/conversations")
async def list_conversations(
    service: TreeService = Depends(get_tree_service),
) -> list[ConversationSummary]:
    conversations = await service.list_conversations()
    return [ConversationSummary.from_conversation(c) for c in conversations]


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    service: TreeService = Depends(get_tree_service),
) -> ConversationDetailResponse:
    try:
        conversation = await service.get_conversation(conversation_id)
    except ConversationNotFoundError as e:
        raise _to_http(e)
    index = await service.index_for(conversation_id)
    roots = index.roots()
    return ConversationDetailResponse(
        **conversation.model_dump(),
        root_id=roots[0].node_id if roots else None,
        nodes=await _responses(service, index.nodes),
    )


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    service: TreeService = Depends(get_tree_service),
) -> None:
    try:
        await service.delete_conversation(conversation_id)
    except ConversationNotFoundError as e:
        raise _to_http(e)


@router.post("/conversations/{conversation_id}/root", status_code=status.HTTP_201_CREATED)
async def create_root(
    conversation_id: str,
    request: CreateRootRequest,
    wait: bool = Query(False),
    service: TreeService = Depends(get_tree_service),
    gen_service: GenerationService = Depends(get_generation_service),
) -> NodeResponse:
    try:
        root = await gen_service.create_root(
            conversation_id,
            request.prompt,
            model=request.model,
            provider=request.provider,
        )
    except _DOMAIN_ERRORS as e:
        raise _to_http(e)
    return await _finish(service, gen_service, root, wait and root.status == "processing")


# -- Tree queries --


@router.get("/nodes/{node_id}")
async def get_node(
    node_id: str,
    service: TreeService = Depends(get_tree_service),
) -> NodeResponse:
    try:
        node = await service.get_node(node_id)
    except NodeNotFoundError as e:
        raise _to_http(e)
    return await _response(service, node)


@router.get("/nodes/{node_id}/lineage")
async def get_lineage(
    node_id: str,
    service: TreeService = Depends(get_tree_service),
) -> list[NodeResponse]:
    try:
        path = await service.get_lineage(node_id)
    except NodeNotFoundError as e:
        raise _to_http(e)
    return await _responses(service, path)


@router.get("/nodes/{node_id}/children")
async def get_children(
    node_id: str,
    service: TreeService = Depends(get_tree_service),
) -> list[NodeResponse]:
    try:
        children = await service.get_children(node_id)
    except NodeNotFoundError as e:
        raise _to_http(e)
    return await _responses(service, children)


@router.get("/nodes/{node_id}/siblings")
async def get_siblings(
    node_id: str,
    service: TreeService = Depends(get_tree_service),
) -> list[NodeResponse]:
    try:
        siblings = await service.get_siblings(node_id)
    except NodeNotFoundError as e:
        raise _to_http(e)
    return await _responses(service, siblings)


@router.get("/nodes/{node_id}/tip")
async def get_branch_tip(
    node_id: str,
    service: TreeService = Depends(get_tree_service),
) -> NodeResponse:
    try:
        tip = await service.get_branch_tip(node_id)
    except NodeNotFoundError as e:
        raise _to_http(e)
    return await _response(service, tip)


# -- Branch operations --


@router.post("/nodes/{node_id}/branch", status_code=status.HTTP_201_CREATED)
async def branch(
    node_id: str,
    request: BranchRequest,
    wait: bool = Query(False),
    service: TreeService = Depends(get_tree_service),
    gen_service: GenerationService = Depends(get_generation_service),
) -> NodeResponse:
    try:
        draft = await gen_service.branch(
            node_id,
            request.prompt,
            model=request.model,
            provider=request.provider,
            conversation_id=request.conversation_id,
        )
    except _DOMAIN_ERRORS as e:
        raise _to_http(e)
    return await _finish(service, gen_service, draft, wait)


@router.post("/nodes/{node_id}/clone", status_code=status.HTTP_201_CREATED)
async def clone(
    node_id: str,
    service: TreeService = Depends(get_tree_service),
) -> NodeResponse:
    try:
        node = await service.clone(node_id)
    except _DOMAIN_ERRORS as e:
        raise _to_http(e)
    return await _response(service, node)


@router.post("/nodes/{node_id}/regenerate", status_code=status.HTTP_201_CREATED)
async def regenerate(
    node_id: str,
    request: RegenerateRequest,
    wait: bool = Query(False),
    service: TreeService = Depends(get_tree_service),
    gen_service: GenerationService = Depends(get_generation_service),
) -> NodeResponse:
    try:
        draft = await gen_service.regenerate(
            node_id, model=request.model, provider=request.provider
        )
    except _DOMAIN_ERRORS as e:
        raise _to_http(e)
    return await _finish(service, gen_service, draft, wait)


@router.post("/nodes/{node_id}/edit-branch", status_code=status.HTTP_201_CREATED)
async def edit_as_branch(
    node_id: str,
    request: EditBranchRequest,
    wait: bool = Query(False),
    service: TreeService = Depends(get_tree_service),
    gen_service: GenerationService = Depends(get_generation_service),
) -> NodeResponse:
    try:
        draft = await gen_service.edit_as_branch(
            node_id, request.prompt, model=request.model, provider=request.provider
        )
    except _DOMAIN_ERRORS as e:
        raise _to_http(e)
    return await _finish(service, gen_service, draft, wait)


@router.post("/nodes/{node_id}/submit")
async def submit(
    node_id: str,
    request: SubmitRequest,
    wait: bool = Query(False),
    service: TreeService = Depends(get_tree_service),
    gen_service: GenerationService = Depends(get_generation_service),
) -> NodeResponse:
    try:
        draft = await gen_service.submit(
            node_id, request.prompt, model=request.model, provider=request.provider
        )
    except _DOMAIN_ERRORS as e:
        raise _to_http(e)
    return await _finish(service, gen_service, draft, wait)


@router.patch("/nodes/{node_id}/prompt")
async def edit_prompt(
    node_id: str,
    request: PatchPromptRequest,
    service: TreeService = Depends(get_tree_service),
) -> NodeResponse:
    try:
        node = await service.edit_prompt(node_id, request.prompt)
    except _DOMAIN_ERRORS as e:
        raise _to_http(e)
    return await _response(service, node)


# -- Cascade deletion --


@router.delete("/nodes/{node_id}")
async def delete_subtree(
    node_id: str,
    service: TreeService = Depends(get_tree_service),
) -> DeleteResponse:
    try:
        removed = await service.delete_subtree(node_id)
    except NodeNotFoundError as e:
        raise _to_http(e)
    return DeleteResponse(deleted_node_ids=sorted(removed))


@router.delete("/nodes/{node_id}/children")
async def clear_children(
    node_id: str,
    service: TreeService = Depends(get_tree_service),
) -> DeleteResponse:
    try:
        removed = await service.clear_children(node_id)
    except NodeNotFoundError as e:
        raise _to_http(e)
    return DeleteResponse(deleted_node_ids=sorted(removed))
