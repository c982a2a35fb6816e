"""Task Registry - live tasks by conversation id, rebuilt on demand."""

import asyncio
from typing import Dict, List, Optional, Type

from ..exceptions import ValidationError
from ..models.conversation import Conversation
from ..utils.logger import get_app_logger
from .base import AgentTask, TaskContext
from .cli import CliAgentTask
from .interactive import InteractiveLlmTask
from .protocol import ProtocolAgentTask


class TaskRegistry:
    """Maps conversation ids to live tasks; at most one task per id."""

    def __init__(self, context: TaskContext):
        """
        Initialize the registry

        Args:
            context: Services handed to every task built
        """
        self.context = context
        self.logger = get_app_logger()
        self._handlers: Dict[str, Type[AgentTask]] = {}
        self._tasks: Dict[str, AgentTask] = {}
        self._rebuilding: Dict[str, asyncio.Task] = {}
        # bumped by kill so an in-flight rebuild re-reads the stored conversation
        self._generations: Dict[str, int] = {}

        self._register_builtin_tasks()

    def _register_builtin_tasks(self):
        self.register("llm", InteractiveLlmTask)
        self.register("acp", ProtocolAgentTask)
        self.register("cli", CliAgentTask)

    def register(self, conversation_type: str, task_class: Type[AgentTask]):
        """
        Register a task class for a conversation type

        Args:
            conversation_type: Conversation type
            task_class: AgentTask subclass
        """
        self._handlers[conversation_type.lower()] = task_class
        self.logger.info(f"Registered task type: {conversation_type.lower()} -> {task_class.__name__}")

    def is_registered(self, conversation_type: str) -> bool:
        return conversation_type.lower() in self._handlers

    def list_registered_types(self) -> List[str]:
        return list(self._handlers.keys())

    def build(self, conversation: Conversation) -> AgentTask:
        """
        Construct the task for a conversation and register it.

        A task already registered under the id is replaced without being
        stopped; the latest build wins.

        Raises:
            ValidationError: If no task class handles the conversation type
        """
        conversation_type = conversation.type.value
        task_class = self._handlers.get(conversation_type)
        if task_class is None:
            raise ValidationError(
                f"Invalid conversation type: {conversation_type}. "
                f"Available types: {', '.join(self._handlers.keys())}"
            )

        task = task_class(conversation, self.context)
        if conversation.id in self._tasks:
            self.logger.warning(f"Replacing live task of conversation {conversation.id}")
        self._tasks[conversation.id] = task
        self.logger.info(f"Built task {conversation.id} (type: {conversation_type})")
        return task

    def get_by_id(self, conversation_id: str) -> Optional[AgentTask]:
        return self._tasks.get(conversation_id)

    async def get_or_rebuild(self, conversation_id: str) -> Optional[AgentTask]:
        """
        Get the live task, rebuilding it from the stored conversation on a miss.

        Concurrent callers for the same id share a single rebuild.

        Returns:
            The task, or None if no stored conversation exists
        """
        task = self._tasks.get(conversation_id)
        if task is not None:
            return task

        rebuild = self._rebuilding.get(conversation_id)
        if rebuild is None:
            rebuild = asyncio.create_task(self._rebuild(conversation_id))
            self._rebuilding[conversation_id] = rebuild
            rebuild.add_done_callback(lambda _: self._rebuilding.pop(conversation_id, None))
        return await asyncio.shield(rebuild)

    async def _rebuild(self, conversation_id: str) -> Optional[AgentTask]:
        while True:
            generation = self._generations.get(conversation_id, 0)
            conversation = await self.context.store.get(conversation_id)
            # a kill during the read means the record may have changed, read it again
            if generation == self._generations.get(conversation_id, 0):
                break
        if conversation is None:
            return None
        # a build may have landed while the store was read
        task = self._tasks.get(conversation_id)
        if task is not None:
            return task
        self.logger.info(f"Rebuilding task of conversation {conversation_id}")
        return self.build(conversation)

    async def kill(self, conversation_id: str) -> bool:
        """
        Kill and unregister a task.

        Returns:
            True if a task was registered
        """
        self._generations[conversation_id] = self._generations.get(conversation_id, 0) + 1
        task = self._tasks.pop(conversation_id, None)
        if task is None:
            return False
        try:
            await task.kill()
        except Exception:
            self.logger.exception(f"Error while killing task {conversation_id}")
        return True

    async def clear(self) -> None:
        """Kill every task."""
        for conversation_id in list(self._tasks.keys()) + list(self._rebuilding.keys()):
            await self.kill(conversation_id)

    def list_tasks(self) -> List[AgentTask]:
        return list(self._tasks.values())
