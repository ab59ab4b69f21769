"""Request and response schemas for conversation and node endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from forkchat.models import Conversation, Node

# -- Requests --


class CreateConversationRequest(BaseModel):
    title: str | None = None


class CreateRootRequest(BaseModel):
    """Body for POST /api/conversations/{id}/root. No prompt = idle placeholder."""

    prompt: str | None = None
    model: str | None = None
    provider: str | None = None


class BranchRequest(BaseModel):
    prompt: str = Field(min_length=1)
    model: str | None = None
    provider: str | None = None
    conversation_id: str | None = None


class RegenerateRequest(BaseModel):
    model: str | None = None
    provider: str | None = None


class EditBranchRequest(BaseModel):
    prompt: str = Field(min_length=1)
    model: str | None = None
    provider: str | None = None


class SubmitRequest(BaseModel):
    """Body for POST /api/nodes/{id}/submit. Prompt defaults to the node's own."""

    prompt: str | None = None
    model: str | None = None
    provider: str | None = None


class PatchPromptRequest(BaseModel):
    prompt: str = Field(min_length=1)


# -- Responses --


class NodeResponse(BaseModel):
    node_id: str
    conversation_id: str
    parent_id: str | None = None
    root_id: str
    depth: int
    prompt: str | None = None
    response: str | None = None
    title: str | None = None
    summary: str | None = None
    model: str
    provider: str
    status: str
    error: str | None = None
    created_at: datetime
    updated_at: datetime
    sibling_count: int = 1
    sibling_index: int = 0

    @classmethod
    def from_node(
        cls, node: Node, sibling_info: dict[str, tuple[int, int]] | None = None
    ) -> "NodeResponse":
        si, sc = (0, 1)
        if sibling_info is not None and node.node_id in sibling_info:
            si, sc = sibling_info[node.node_id]
        return cls(**node.model_dump(), sibling_index=si, sibling_count=sc)


class ConversationSummary(BaseModel):
    conversation_id: str
    title: str
    created_at: datetime

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationSummary":
        return cls(**conversation.model_dump())


class ConversationDetailResponse(ConversationSummary):
    root_id: str | None = None
    nodes: list[NodeResponse] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    deleted_node_ids: list[str]
