"""AgentTask abstract base class."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set
from uuid import uuid4

from ..agents.client import AgentClient, OpenAICompatibleClient
from ..config import Settings
from ..exceptions import BootstrapError, PersistenceError, ValidationError
from ..models.conversation import Conversation, ConversationType, SendMessageRequest, TaskStatus
from ..models.message import (
    STATUS_EVENTS,
    TRANSIENT_EVENTS,
    EventType,
    Message,
    MessagePosition,
    StreamEvent,
)
from ..services.config_store import ProcessConfig
from ..services.conversation_store import ConversationStore
from ..services.stream_bus import StreamBus
from ..utils.logger import get_app_logger

ClientFactory = Callable[[Conversation], AgentClient]
ControlHandler = Callable[[Any], Awaitable[Any]]


def default_client_factory(settings: Settings) -> ClientFactory:
    def factory(conversation: Conversation) -> AgentClient:
        return OpenAICompatibleClient(conversation.model, timeout=settings.request_timeout)
    return factory


@dataclass
class TaskContext:
    """Shared services handed to every task the registry builds."""

    store: ConversationStore
    bus: StreamBus
    settings: Settings
    process_config: ProcessConfig
    client_factory: Optional[ClientFactory] = None

    def __post_init__(self):
        if self.client_factory is None:
            self.client_factory = default_client_factory(self.settings)


def content_message_id(msg_id: str) -> str:
    """Id of the assistant reply persisted for a turn."""
    return f"{msg_id}-reply"


class AgentTask(ABC):
    """
    Live, in-memory handle of one conversation's agent backend.

    Owns the status machine, the confirmation table and the keyed
    request/reply table. Every event a backend produces goes through
    ``handle_event``: status update, persistence, then publication.
    """

    type: ConversationType

    def __init__(self, conversation: Conversation, context: TaskContext):
        """
        Initialize the task

        Args:
            conversation: Conversation record the task serves
            context: Store, stream bus, settings and stored configuration
        """
        self.conversation = conversation
        self.conversation_id = conversation.id
        self.workspace = conversation.workspace or ""
        self.context = context
        self.store = context.store
        self.bus = context.bus
        self.settings = context.settings
        self.status: TaskStatus = TaskStatus.FINISHED
        self.logger = get_app_logger()

        self._abort = asyncio.Event()
        self._confirmations: Dict[str, asyncio.Future] = {}
        self._requests: Dict[str, asyncio.Future] = {}
        self._control_handlers: Dict[str, ControlHandler] = {}
        self._text_buffers: Dict[str, str] = {}
        self._running: Set[asyncio.Task] = set()
        self._killed = False

    # === Messaging ===
    async def send(self, request: SendMessageRequest) -> None:
        """
        Send a user message.

        The user message is persisted under its own msg_id before the backend
        sees it.

        Args:
            request: Message text, msg_id and attached files

        Raises:
            BootstrapError: If the backend could not be initialised
        """
        user_message = Message(
            id=request.msg_id,
            conversation_id=self.conversation_id,
            msg_id=request.msg_id,
            type="text",
            position=MessagePosition.RIGHT,
            content={"content": request.input},
        )
        await self._persist(user_message)
        self.status = TaskStatus.PENDING
        self._abort = asyncio.Event()
        await self._dispatch(request)

    @abstractmethod
    async def _dispatch(self, request: SendMessageRequest) -> None:
        """Hand a message to the backend. Returns once the turn is started."""
        pass

    async def _fail_send(self, msg_id: str, error: BaseException) -> None:
        """Persist and publish a bootstrap failure, then raise it to the caller."""
        message = error.message if isinstance(error, BootstrapError) else str(error)
        await self.emit(EventType.ERROR, message, msg_id)
        if isinstance(error, BootstrapError):
            raise error
        raise BootstrapError(message, error) from error

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every background turn or request has finished."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    # === Confirmation ===
    def wait_for_confirmation(self, call_id: str) -> asyncio.Future:
        """
        Register a confirmation slot.

        Args:
            call_id: Tool call awaiting a decision

        Returns:
            Future resolved with the decision by ``confirm``
        """
        existing = self._confirmations.get(call_id)
        if existing is not None and not existing.done():
            return existing
        future = asyncio.get_running_loop().create_future()
        self._confirmations[call_id] = future
        return future

    def confirm(self, call_id: str, decision: str) -> bool:
        """
        Resolve a confirmation slot.

        Unknown or already resolved slots are left alone.

        Returns:
            True if a pending slot was resolved
        """
        future = self._confirmations.pop(call_id, None)
        if future is None or future.done():
            self.logger.debug(f"No pending confirmation for call {call_id} in {self.conversation_id}")
            return False
        future.set_result(decision)
        return True

    def has_pending_confirmation(self, call_id: str) -> bool:
        future = self._confirmations.get(call_id)
        return future is not None and not future.done()

    # === Keyed request/reply ===
    async def request_reply(self, key: str, payload: Any = None) -> Any:
        """
        Post a control request and wait for the reply with the same key.

        Raises:
            ValidationError: If a request with the same key is outstanding
        """
        if key in self._requests:
            raise ValidationError(f"request {key} is already outstanding")
        future = asyncio.get_running_loop().create_future()
        self._requests[key] = future
        try:
            await self._post_control(key, payload)
            return await future
        finally:
            self._requests.pop(key, None)

    def reply(self, key: str, value: Any = None, error: Optional[BaseException] = None) -> bool:
        """Resolve the outstanding request with this key."""
        future = self._requests.get(key)
        if future is None or future.done():
            self.logger.debug(f"Dropping reply for unknown request {key}")
            return False
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)
        return True

    async def _post_control(self, key: str, payload: Any) -> None:
        """
        Deliver a control request to the backend.

        The default runs the in-process handler registered for the key and
        replies with its result.
        """
        handler = self._control_handlers.get(key)
        if handler is None:
            self.reply(key, error=ValidationError(f"no handler for {key}"))
            return

        async def run():
            try:
                self.reply(key, await handler(payload))
            except Exception as e:
                self.reply(key, error=e)

        self._spawn(run())

    # === Stop / teardown ===
    async def stop(self) -> None:
        """Abort the current operation. Not a failure; the task stays usable."""
        self._abort.set()
        await self._on_stop()

    async def _on_stop(self) -> None:
        pass

    async def kill(self) -> None:
        """Stop the task for good and release pending slots."""
        if self._killed:
            return
        self._killed = True
        self._abort.set()
        for future in list(self._confirmations.values()) + list(self._requests.values()):
            if not future.done():
                future.cancel()
        self._confirmations.clear()
        self._requests.clear()
        try:
            await self._teardown()
        finally:
            for turn in list(self._running):
                turn.cancel()
        self.logger.info(f"Killed {self.type.value} task {self.conversation_id}")

    async def _teardown(self) -> None:
        pass

    # === Event interception ===
    async def emit(self, event_type: EventType, data: Any, msg_id: str) -> None:
        await self.handle_event(StreamEvent(type=event_type.value, data=data, msg_id=msg_id))

    async def handle_event(self, event: StreamEvent) -> None:
        """
        Intercept an event: update status, persist, then publish it unchanged.
        """
        event.conversation_id = self.conversation_id
        self._update_status(event.type)

        if event.type not in TRANSIENT_EVENTS and event.type not in STATUS_EVENTS:
            try:
                message = self.transform_event(event)
            except Exception as e:
                self.logger.exception(f"Failed to transform {event.type} event of {self.conversation_id}")
                if event.type != EventType.ERROR.value:
                    await self.emit(EventType.ERROR, str(e), event.msg_id)
                return
            if message is not None:
                await self._persist(message)

        if event.type == EventType.FINISH.value:
            self._text_buffers.pop(event.msg_id, None)
        self.bus.publish(event)

    def _update_status(self, event_type: str) -> None:
        if event_type == EventType.START.value:
            self.status = TaskStatus.RUNNING
        elif event_type == EventType.FINISH.value:
            if self.status != TaskStatus.ERROR:
                self.status = TaskStatus.FINISHED
        elif event_type == EventType.ERROR.value:
            self.status = TaskStatus.ERROR

    def transform_event(self, event: StreamEvent) -> Optional[Message]:
        """
        Map an event to the message it persists as.

        Content deltas are accumulated per msg_id so the persisted reply is
        always the full text. Returns None for events that are not persisted.
        """
        if event.type == EventType.CONTENT.value:
            text = self._text_buffers.get(event.msg_id, "") + str(event.data or "")
            self._text_buffers[event.msg_id] = text
            return Message(
                id=content_message_id(event.msg_id),
                conversation_id=self.conversation_id,
                msg_id=event.msg_id,
                type="text",
                position=MessagePosition.LEFT,
                content={"content": text},
            )
        if event.type == EventType.ERROR.value:
            return Message(
                id=uuid4().hex,
                conversation_id=self.conversation_id,
                msg_id=event.msg_id,
                type="tips",
                position=MessagePosition.CENTER,
                content={"content": str(event.data), "type": "error"},
            )
        if event.type == EventType.TOOL_GROUP.value:
            return Message(
                id=event.msg_id,
                conversation_id=self.conversation_id,
                msg_id=event.msg_id,
                type="tool_group",
                content={"tools": event.data},
            )
        return Message(
            id=event.msg_id,
            conversation_id=self.conversation_id,
            msg_id=event.msg_id,
            type=event.type,
            content=event.data if isinstance(event.data, dict) else {"content": event.data},
        )

    async def _persist(self, message: Message) -> None:
        try:
            await self.store.add_or_update_message(message)
        except PersistenceError as e:
            self.logger.error(f"Failed to persist message {message.id} of {self.conversation_id}: {e.message}")

    # === Helpers ===
    def get_status(self) -> Dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "type": self.type.value,
            "status": self.status.value,
            "workspace": self.workspace,
            "pending_confirmations": len([f for f in self._confirmations.values() if not f.done()]),
        }
