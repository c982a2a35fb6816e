from .client import AgentClient, AgentEvent, OpenAICompatibleClient
from .memory import build_history_text, load_workspace_memory
from .scheduler import ToolScheduler
from .tools import BaseTool, ToolRegistry, ToolResult, build_workspace_tools

__all__ = [
    "AgentClient",
    "AgentEvent",
    "OpenAICompatibleClient",
    "build_history_text",
    "load_workspace_memory",
    "ToolScheduler",
    "BaseTool",
    "ToolRegistry",
    "ToolResult",
    "build_workspace_tools",
]
