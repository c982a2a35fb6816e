"""Tool call models used between the model client, the scheduler and the UI."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class ToolCallStatus(str, Enum):
    """Lifecycle of one tool call within a prompt turn."""

    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_TOOL_STATUSES = {ToolCallStatus.SUCCESS, ToolCallStatus.ERROR, ToolCallStatus.CANCELLED}


class ConfirmationDecision(str, Enum):
    """Answers the UI can give to a tool call awaiting approval."""

    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    CANCEL = "cancel"


@dataclass
class ToolCallRequest:
    """A tool invocation requested by the model."""

    call_id: str
    name: str
    args: Dict[str, Any]
    prompt_id: str
    is_client_initiated: bool = False


@dataclass
class ToolCallResponse:
    """What a finished call hands back to the model and the UI."""

    response_parts: List[Dict[str, Any]]
    result_display: str = ""
    error: Optional[str] = None


@dataclass
class ToolCall:
    """Scheduler-side state of one tool call."""

    request: ToolCallRequest
    status: ToolCallStatus = ToolCallStatus.PENDING
    description: str = ""
    response: Optional[ToolCallResponse] = None
    confirmation_details: Optional[Dict[str, Any]] = None
    modifies_workspace: bool = False

    @property
    def call_id(self) -> str:
        return self.request.call_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TOOL_STATUSES


class ToolDisplay(BaseModel):
    """UI-facing view of a tool call, carried by tool_group events."""

    call_id: str
    name: str
    description: str = ""
    status: ToolCallStatus
    result_display: Optional[str] = None
    confirmation_details: Optional[Dict[str, Any]] = Field(default=None)

    @classmethod
    def from_call(cls, call: ToolCall) -> "ToolDisplay":
        return cls(
            call_id=call.call_id,
            name=call.request.name,
            description=call.description,
            status=call.status,
            result_display=call.response.result_display if call.response else None,
            confirmation_details=call.confirmation_details,
        )
