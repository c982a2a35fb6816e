"""Database models (Data Objects) - map to database tables."""

from .conversation import ConversationDO
from .message import MessageDO

__all__ = ["ConversationDO", "MessageDO"]
