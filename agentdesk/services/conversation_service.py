"""Conversation service - the logical operations behind the API."""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..config import Settings
from ..exceptions import AgentDeskError, PersistenceError, TaskNotFoundError, ValidationError
from ..models.conversation import (
    Conversation,
    ConversationType,
    CreateConversationRequest,
    SendMessageRequest,
    ConfirmMessageRequest,
    TaskStatus,
    UpdateConversationRequest,
)
from ..models.message import Message
from ..tasks.interactive import InteractiveLlmTask
from ..tasks.protocol import ProtocolAgentTask
from ..tasks.registry import TaskRegistry
from ..utils.logger import get_app_logger
from .conversation_store import ConversationStore
from .workspace import copy_files_to_directory, create_workspace

NOT_FOUND_MESSAGE = "conversation not found"


class ConversationService:
    """Create, query, drive and tear down conversations and their live tasks."""

    def __init__(self, store: ConversationStore, registry: TaskRegistry, settings: Settings):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.logger = get_app_logger()

    def _overlay_status(self, conversation: Conversation) -> Conversation:
        """Status comes from the live task; no task means finished."""
        task = self.registry.get_by_id(conversation.id)
        conversation.status = task.status if task else TaskStatus.FINISHED
        return conversation

    # === Creation ===
    async def create(self, request: CreateConversationRequest) -> Conversation:
        """
        Create a conversation and its task.

        Args:
            request: Type, optional id, name, model and extra

        Returns:
            The created conversation

        Raises:
            ValidationError: On unknown type, missing model or bad workspace
        """
        try:
            conversation_type = ConversationType(request.type.lower())
        except ValueError:
            raise ValidationError(
                f"Invalid conversation type: {request.type}. "
                f"Available types: {', '.join(self.registry.list_registered_types())}"
            )
        if not self.registry.is_registered(conversation_type.value):
            raise ValidationError(f"Invalid conversation type: {request.type}")
        if conversation_type == ConversationType.LLM and request.model is None:
            raise ValidationError("model is required for llm conversations")

        conversation_id = request.id or uuid4().hex
        extra: Dict[str, Any] = dict(request.extra)
        workspace = extra.get("workspace")
        if workspace:
            path = Path(workspace).expanduser()
            if not path.is_dir():
                raise ValidationError(f"workspace does not exist: {workspace}")
            extra["workspace"] = str(path.resolve())
        else:
            extra["workspace"] = create_workspace(self.settings.data_dir, conversation_id)

        default_files = extra.pop("default_files", None) or []
        if default_files:
            await copy_files_to_directory(extra["workspace"], default_files)

        conversation = Conversation(
            id=conversation_id,
            type=conversation_type,
            name=request.name or Path(extra["workspace"]).name,
            model=request.model,
            extra=extra,
        )
        task = self._build(conversation)
        await self._persist_new(conversation)

        if isinstance(task, ProtocolAgentTask):
            task.init_agent()

        self.logger.info(f"Conversation created: {conversation_id} (type: {conversation_type.value})")
        return self._overlay_status(conversation)

    async def create_with_conversation(self, conversation: Conversation) -> Conversation:
        """Register a task for a fully formed conversation and persist it."""
        now = datetime.utcnow()
        conversation = conversation.model_copy(update={"create_time": now, "modify_time": now})
        self._build(conversation)
        await self._persist_new(conversation)
        self.logger.info(f"Conversation created from record: {conversation.id}")
        return self._overlay_status(conversation)

    def _build(self, conversation: Conversation):
        try:
            return self.registry.build(conversation)
        except AgentDeskError:
            raise
        except Exception as e:
            self.logger.exception(f"Failed to build task for {conversation.id}")
            raise ValidationError(f"Failed to create {conversation.type.value} conversation: {e}")

    async def _persist_new(self, conversation: Conversation) -> None:
        try:
            await self.store.create(conversation)
        except PersistenceError as e:
            # the live task still serves the session
            self.logger.error(f"Failed to persist conversation {conversation.id}: {e.message}")

    # === Queries ===
    async def get(self, conversation_id: str) -> Optional[Conversation]:
        conversation = await self.store.get(conversation_id)
        if conversation is None:
            return None
        return self._overlay_status(conversation)

    async def list(self) -> List[Conversation]:
        return [self._overlay_status(c) for c in await self.store.list()]

    async def get_associated(self, conversation_id: str) -> List[Conversation]:
        """Conversations sharing the workspace of the given one (itself included)."""
        current = await self.store.get(conversation_id)
        if current is None or not current.workspace:
            return []
        return [self._overlay_status(c) for c in await self.store.list_by_workspace(current.workspace)]

    async def get_messages(self, conversation_id: str, limit: int = 10000) -> List[Message]:
        return await self.store.get_messages(conversation_id, limit)

    # === Mutations ===
    async def remove(self, conversation_id: str) -> bool:
        """Kill the live task, then delete the conversation and its messages."""
        await self.registry.kill(conversation_id)
        try:
            removed = await self.store.delete(conversation_id)
        except PersistenceError as e:
            self.logger.error(f"Failed to delete conversation {conversation_id}: {e.message}")
            return False
        if removed:
            self.logger.info(f"Conversation removed: {conversation_id}")
        return removed

    async def update(self, conversation_id: str, request: UpdateConversationRequest) -> bool:
        """
        Apply a partial update. A model change kills the live task so the next
        message rebuilds it with the new model.

        Returns:
            True if the conversation was updated
        """
        existing = await self.store.get(conversation_id)
        if existing is None:
            return False

        updates: Dict[str, Any] = {}
        if request.name is not None:
            updates["name"] = request.name
        if request.extra is not None:
            updates["extra"] = {**existing.extra, **request.extra}
        model_changed = request.model is not None and request.model != existing.model
        if request.model is not None:
            updates["model"] = request.model.model_dump()

        try:
            updated = await self.store.update(conversation_id, updates)
        except PersistenceError as e:
            self.logger.error(f"Failed to update conversation {conversation_id}: {e.message}")
            return False

        if updated and model_changed:
            self.logger.info(f"Model of {conversation_id} changed, killing its task")
            await self.registry.kill(conversation_id)
        return updated

    async def reset(self, conversation_id: Optional[str] = None) -> None:
        """Kill one task, or every task when no id is given."""
        if conversation_id:
            await self.registry.kill(conversation_id)
        else:
            await self.registry.clear()

    # === Task control ===
    async def stop(self, conversation_id: str) -> Optional[str]:
        """
        Stop the current operation of a conversation.

        Returns:
            An informational message when no task is live, else None
        """
        task = self.registry.get_by_id(conversation_id)
        if task is None:
            return NOT_FOUND_MESSAGE
        await task.stop()
        return None

    async def send_message(self, conversation_id: str, request: SendMessageRequest) -> None:
        """
        Send a message, rebuilding the task from the store if needed.

        Raises:
            TaskNotFoundError: If the conversation does not exist
            BootstrapError: If the backend could not be initialised
        """
        task = await self.registry.get_or_rebuild(conversation_id)
        if task is None:
            raise TaskNotFoundError(conversation_id)
        if request.files:
            await copy_files_to_directory(task.workspace, request.files)
        await task.send(request)

    async def confirm_message(self, conversation_id: str, request: ConfirmMessageRequest) -> None:
        """
        Deliver a decision to a pending confirmation slot.

        Raises:
            TaskNotFoundError: If no task is live for the conversation
            ValidationError: If no confirmation is pending for the call id
        """
        task = self.registry.get_by_id(conversation_id)
        if task is None:
            raise TaskNotFoundError(conversation_id)
        if not task.confirm(request.call_id, request.decision):
            raise ValidationError(f"no pending confirmation for call {request.call_id}")

    async def reload_context(self, conversation_id: str) -> None:
        """
        Re-inject recent history into an interactive conversation.

        Raises:
            TaskNotFoundError: If the conversation does not exist
            ValidationError: If the conversation is not interactive
        """
        task = await self.registry.get_or_rebuild(conversation_id)
        if task is None:
            raise TaskNotFoundError(conversation_id)
        if not isinstance(task, InteractiveLlmTask):
            raise ValidationError(f"reload context is only supported for interactive conversations, not {task.type.value}")
        await task.reload_context()
