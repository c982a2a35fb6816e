"""Message and stream event models."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class MessagePosition(str, Enum):
    """Side of the chat a message is rendered on."""

    LEFT = "left"
    RIGHT = "right"
    CENTER = "center"


class EventType(str, Enum):
    """Kinds of events a task publishes on the stream."""

    START = "start"
    FINISH = "finish"
    ERROR = "error"
    THOUGHT = "thought"
    CONTENT = "content"
    TOOL_GROUP = "tool_group"
    ACP_TOOL_CALL = "acp_tool_call"
    ACP_PERMISSION = "acp_permission"


# Reasoning previews are shown live and never persisted
TRANSIENT_EVENTS = {EventType.THOUGHT.value}
# Only drive the task status
STATUS_EVENTS = {EventType.START.value, EventType.FINISH.value}


class Message(BaseModel):
    """Persisted chat message. Upserted by id."""

    id: str = Field(description="Message ID")
    conversation_id: str = Field(description="Conversation ID")
    msg_id: Optional[str] = Field(None, description="Turn the message belongs to")
    type: str = Field(description="text, tips, tool_group, acp_tool_call, acp_permission")
    position: MessagePosition = Field(default=MessagePosition.LEFT, description="Originator side")
    content: Dict[str, Any] = Field(default_factory=dict, description="Type specific payload")
    status: Optional[str] = Field(None, description="Optional status (tool groups, permissions)")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")

    @property
    def text(self) -> str:
        value = self.content.get("content", "")
        return value if isinstance(value, str) else ""


class StreamEvent(BaseModel):
    """Typed event delivered to the UI for one conversation."""

    type: str = Field(description="Event kind, see EventType")
    data: Any = Field(default=None, description="Event payload")
    msg_id: str = Field(description="Turn or item the event belongs to")
    conversation_id: Optional[str] = Field(None, description="Set by the task before publishing")


class ConversationMessagesResponse(BaseModel):
    """Response model for conversation messages."""

    conversation_id: str = Field(description="Conversation ID")
    messages: List[Message] = Field(description="List of messages")
    total: int = Field(description="Total number of messages")
