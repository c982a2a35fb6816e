"""Conversation REST API routes - V1.

Every route answers with the ``{success, data, message}`` envelope; core
errors never surface as HTTP errors.
"""

from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, Query

from ...exceptions import AgentDeskError
from ...models.conversation import (
    ConfirmMessageRequest,
    Conversation,
    CreateConversationRequest,
    CreateWithConversationRequest,
    ResetConversationRequest,
    SendMessageRequest,
    UpdateConversationRequest,
)
from ...models.message import ConversationMessagesResponse
from ...models.response import BridgeResponse
from ...services.conversation_service import ConversationService
from ...utils.logger import get_app_logger

router = APIRouter(prefix="/api/v1/conversations", tags=["Conversations"])
logger = get_app_logger()

# Conversation service (set by main.py)
conversation_service: ConversationService = None


def get_service() -> ConversationService:
    """Dependency to get the conversation service."""
    if conversation_service is None:
        raise HTTPException(status_code=500, detail="Conversation service not initialized")
    return conversation_service


async def _envelope(operation: str, call: Callable[[], Awaitable[Any]]) -> BridgeResponse:
    """Run an operation and wrap its outcome."""
    try:
        return BridgeResponse.ok(await call())
    except AgentDeskError as e:
        logger.warning(f"{operation} failed: {e.message}")
        return BridgeResponse.fail(e.message)
    except Exception as e:
        logger.exception(f"{operation} failed")
        return BridgeResponse.fail(str(e))


def _dump(conversation: Conversation) -> dict:
    return conversation.model_dump(mode="json")


@router.post("", response_model=BridgeResponse)
async def create_conversation(
    request: CreateConversationRequest,
    service: ConversationService = Depends(get_service)
):
    """Create a conversation and its task."""
    async def call():
        return _dump(await service.create(request))
    return await _envelope("create", call)


@router.post("/with-conversation", response_model=BridgeResponse)
async def create_with_conversation(
    request: CreateWithConversationRequest,
    service: ConversationService = Depends(get_service)
):
    """Create a task for a fully formed conversation record."""
    async def call():
        return _dump(await service.create_with_conversation(request.conversation))
    return await _envelope("createWithConversation", call)


@router.get("", response_model=BridgeResponse)
async def list_conversations(service: ConversationService = Depends(get_service)):
    """List conversations of both stores, most recently modified first."""
    async def call():
        return [_dump(c) for c in await service.list()]
    return await _envelope("list", call)


@router.post("/reset", response_model=BridgeResponse)
async def reset_conversations(
    request: ResetConversationRequest,
    service: ConversationService = Depends(get_service)
):
    """Kill one task, or all of them when no id is given."""
    return await _envelope("reset", lambda: service.reset(request.id))


@router.get("/{conversation_id}", response_model=BridgeResponse)
async def get_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_service)
):
    """Get a conversation with the status of its live task."""
    async def call():
        conversation = await service.get(conversation_id)
        return _dump(conversation) if conversation else None
    return await _envelope("get", call)


@router.get("/{conversation_id}/associated", response_model=BridgeResponse)
async def get_associated_conversations(
    conversation_id: str,
    service: ConversationService = Depends(get_service)
):
    """List conversations sharing the workspace of this one."""
    async def call():
        return [_dump(c) for c in await service.get_associated(conversation_id)]
    return await _envelope("getAssociated", call)


@router.patch("/{conversation_id}", response_model=BridgeResponse)
async def update_conversation(
    conversation_id: str,
    request: UpdateConversationRequest,
    service: ConversationService = Depends(get_service)
):
    """Partially update a conversation."""
    return await _envelope("update", lambda: service.update(conversation_id, request))


@router.delete("/{conversation_id}", response_model=BridgeResponse)
async def remove_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_service)
):
    """Kill the task and delete the conversation with its messages."""
    return await _envelope("remove", lambda: service.remove(conversation_id))


@router.post("/{conversation_id}/stop", response_model=BridgeResponse)
async def stop_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_service)
):
    """Stop the current operation. Succeeds even without a live task."""
    try:
        note = await service.stop(conversation_id)
    except AgentDeskError as e:
        return BridgeResponse.fail(e.message)
    return BridgeResponse.ok(message=note)


@router.post("/{conversation_id}/messages", response_model=BridgeResponse)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    service: ConversationService = Depends(get_service)
):
    """Send a user message."""
    return await _envelope("sendMessage", lambda: service.send_message(conversation_id, request))


@router.get("/{conversation_id}/messages", response_model=BridgeResponse)
async def get_messages(
    conversation_id: str,
    limit: int = Query(1000, ge=1, le=10000, description="Maximum number of messages"),
    service: ConversationService = Depends(get_service)
):
    """Get persisted messages of a conversation."""
    async def call():
        messages = await service.get_messages(conversation_id, limit)
        return ConversationMessagesResponse(
            conversation_id=conversation_id,
            messages=messages,
            total=len(messages),
        ).model_dump(mode="json")
    return await _envelope("getMessages", call)


@router.post("/{conversation_id}/confirm", response_model=BridgeResponse)
async def confirm_message(
    conversation_id: str,
    request: ConfirmMessageRequest,
    service: ConversationService = Depends(get_service)
):
    """Deliver a decision for a tool call awaiting approval."""
    return await _envelope("confirmMessage", lambda: service.confirm_message(conversation_id, request))


@router.post("/{conversation_id}/reload-context", response_model=BridgeResponse)
async def reload_context(
    conversation_id: str,
    service: ConversationService = Depends(get_service)
):
    """Re-inject recent history into an interactive conversation."""
    return await _envelope("reloadContext", lambda: service.reload_context(conversation_id))
