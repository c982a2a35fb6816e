"""Per-conversation delivery of stream events to the UI."""

import asyncio
from typing import Dict, Optional, Set

from ..models.message import StreamEvent
from ..utils.logger import get_app_logger


class Subscription:
    """One consumer of a conversation's events. Iterate it, close it when done."""

    def __init__(self, bus: "StreamBus", conversation_id: str, max_size: int = 1000):
        self.bus = bus
        self.conversation_id = conversation_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self.closed = False

    def _offer(self, event: Optional[StreamEvent]) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            # slow consumer: drop the oldest event rather than block the task
            self.queue.get_nowait()
            self.queue.put_nowait(event)

    async def get(self) -> Optional[StreamEvent]:
        """Next event, or None once the subscription is closed."""
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> StreamEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.bus._remove(self)
        self._offer(None)


class StreamBus:
    """Fans out events to every subscriber of their conversation id."""

    def __init__(self):
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self.logger = get_app_logger()

    def subscribe(self, conversation_id: str) -> Subscription:
        subscription = Subscription(self, conversation_id)
        self._subscribers.setdefault(conversation_id, set()).add(subscription)
        self.logger.debug(f"Stream subscriber added for conversation {conversation_id}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.conversation_id)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.conversation_id]

    def publish(self, event: StreamEvent) -> int:
        """
        Deliver an event without blocking.

        Args:
            event: Event with conversation_id set

        Returns:
            Number of subscribers reached
        """
        subscribers = list(self._subscribers.get(event.conversation_id or "", ()))
        for subscription in subscribers:
            subscription._offer(event)
        return len(subscribers)

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self._subscribers.get(conversation_id, ()))

    def close(self, conversation_id: str) -> None:
        """End every subscription of a conversation."""
        for subscription in list(self._subscribers.get(conversation_id, ())):
            subscription.close()

    def close_all(self) -> None:
        for conversation_id in list(self._subscribers.keys()):
            self.close(conversation_id)
