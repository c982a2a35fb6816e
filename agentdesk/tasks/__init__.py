from .base import AgentTask, TaskContext
from .cli import CliAgentTask
from .interactive import InteractiveLlmTask
from .protocol import ProtocolAgentTask
from .registry import TaskRegistry

__all__ = [
    "AgentTask",
    "TaskContext",
    "CliAgentTask",
    "InteractiveLlmTask",
    "ProtocolAgentTask",
    "TaskRegistry",
]
