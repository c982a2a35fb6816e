"""Repository layer for data access."""

from .conversation import ConversationRepository
from .message import MessageRepository

__all__ = ["ConversationRepository", "MessageRepository"]
