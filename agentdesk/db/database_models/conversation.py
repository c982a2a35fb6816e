"""Conversation database model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional


@dataclass
class ConversationDO:
    """Conversation data object - maps to conversations table."""

    id: str
    type: str
    name: str
    workspace: Optional[str] = None
    model: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    status: str = "finished"
    created_at: datetime = field(default_factory=datetime.utcnow)
    modified_at: datetime = field(default_factory=datetime.utcnow)
