"""Conversation models."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class ConversationType(str, Enum):
    """Backend kind a conversation is bound to."""

    LLM = "llm"
    ACP = "acp"
    CLI = "cli"


class TaskStatus(str, Enum):
    """Status of the live task, overlaid on the conversation."""

    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"


class ModelDescriptor(BaseModel):
    """Provider and model a conversation talks to."""

    id: str = Field(description="Provider record ID")
    platform: str = Field(default="openai", description="Provider platform")
    name: str = Field(default="", description="Provider display name")
    base_url: str = Field(default="https://api.openai.com/v1", description="API base URL")
    api_key: str = Field(default="", description="API key")
    use_model: str = Field(description="Model name sent to the provider")


class Conversation(BaseModel):
    """Persisted record of a chat session."""

    id: str = Field(description="Conversation ID")
    type: ConversationType = Field(description="Backend kind")
    name: str = Field(description="Display name")
    model: Optional[ModelDescriptor] = Field(None, description="Bound model (interactive conversations)")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Backend specific data (workspace, backend, session_id)")
    status: TaskStatus = Field(default=TaskStatus.FINISHED, description="Status of the live task")
    create_time: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")
    modify_time: datetime = Field(default_factory=datetime.utcnow, description="Last modification timestamp")

    @property
    def workspace(self) -> Optional[str]:
        return self.extra.get("workspace")


class CreateConversationRequest(BaseModel):
    """Request model for creating a conversation."""

    type: str = Field(description="Conversation type: llm, acp or cli")
    name: Optional[str] = Field(None, description="Conversation name", max_length=200)
    id: Optional[str] = Field(None, description="Caller chosen conversation ID")
    model: Optional[ModelDescriptor] = Field(None, description="Model descriptor")
    extra: Dict[str, Any] = Field(default_factory=dict, description="workspace, default_files, backend, web_search_engine")


class CreateWithConversationRequest(BaseModel):
    """Request model for re-creating a conversation from an existing record."""

    conversation: Conversation


class UpdateConversationRequest(BaseModel):
    """Partial update of a conversation."""

    name: Optional[str] = Field(None, description="New name", min_length=1, max_length=200)
    model: Optional[ModelDescriptor] = Field(None, description="New model; a change kills the live task")
    extra: Optional[Dict[str, Any]] = Field(None, description="Keys merged into extra")


class ResetConversationRequest(BaseModel):
    """Reset one task, or every task when no id is given."""

    id: Optional[str] = None


class SendMessageRequest(BaseModel):
    """Request model for sending a message."""

    input: str = Field(description="Message text")
    msg_id: str = Field(description="Caller chosen message ID", min_length=1)
    files: List[str] = Field(default_factory=list, description="Files copied into the workspace first")


class ConfirmMessageRequest(BaseModel):
    """Decision on a tool call awaiting approval."""

    msg_id: str = Field(default="", description="Message the tool call belongs to")
    call_id: str = Field(description="Tool call ID")
    decision: str = Field(description="proceed_once, proceed_always, cancel or an ACP option id")
