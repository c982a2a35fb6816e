"""Storage, configuration and streaming services.

``conversation_service`` is imported directly by its users: it depends on
the tasks, which depend on the services exported here.
"""

from .config_store import ProcessConfig
from .conversation_store import ConversationStore
from .legacy_store import LegacyRecordStore
from .stream_bus import StreamBus, Subscription

__all__ = [
    "ProcessConfig",
    "ConversationStore",
    "LegacyRecordStore",
    "StreamBus",
    "Subscription",
]
