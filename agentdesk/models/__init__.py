"""Pydantic models for the domain and the API."""

from .conversation import (
    Conversation,
    ConversationType,
    ModelDescriptor,
    TaskStatus,
    CreateConversationRequest,
    CreateWithConversationRequest,
    UpdateConversationRequest,
    ResetConversationRequest,
    SendMessageRequest,
    ConfirmMessageRequest,
)
from .message import Message, MessagePosition, StreamEvent, EventType
from .response import BridgeResponse

__all__ = [
    "Conversation",
    "ConversationType",
    "ModelDescriptor",
    "TaskStatus",
    "CreateConversationRequest",
    "CreateWithConversationRequest",
    "UpdateConversationRequest",
    "ResetConversationRequest",
    "SendMessageRequest",
    "ConfirmMessageRequest",
    "Message",
    "MessagePosition",
    "StreamEvent",
    "EventType",
    "BridgeResponse",
]
