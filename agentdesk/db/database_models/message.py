"""Message database model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional


@dataclass
class MessageDO:
    """Message data object - maps to messages table."""

    id: str
    conversation_id: str
    type: str
    position: str
    content: Dict[str, Any] = field(default_factory=dict)
    msg_id: Optional[str] = None
    status: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
