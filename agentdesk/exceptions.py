"""Error taxonomy shared by the store, the tasks and the API layer."""

from typing import Optional


class AgentDeskError(Exception):
    """Base class for every error the core raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AgentDeskError):
    """Unknown conversation type, malformed input."""


class TaskNotFoundError(ValidationError):
    """No conversation (and so no task) for the given id."""

    def __init__(self, conversation_id: str):
        super().__init__(f"conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class BootstrapError(AgentDeskError):
    """Configuration, authentication or model initialisation failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ToolExecutionError(AgentDeskError):
    """A single tool call failed. Reported on the stream, never fatal to the task."""

    def __init__(self, call_id: str, message: str):
        super().__init__(message)
        self.call_id = call_id


class CancellationSignal(AgentDeskError):
    """The user stopped the current operation. Not a failure."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class PersistenceError(AgentDeskError):
    """A store write failed. Logged by the streaming path, not fatal."""
