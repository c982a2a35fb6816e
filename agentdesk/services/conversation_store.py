"""Conversation store facade.

The core talks to one logical store. Behind it, DuckDB is the structured
store and the legacy flat record store is consulted on a miss; records
found there are migrated in the background without blocking the caller.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Any

from ..db import DatabaseConnection, ConversationRepository, MessageRepository
from ..db.database_models import ConversationDO, MessageDO
from ..exceptions import PersistenceError
from ..models.conversation import Conversation, ModelDescriptor
from ..models.message import Message
from ..utils.logger import get_app_logger
from .legacy_store import LegacyRecordStore


def conversation_to_do(conversation: Conversation) -> ConversationDO:
    return ConversationDO(
        id=conversation.id,
        type=conversation.type.value,
        name=conversation.name,
        workspace=conversation.workspace,
        model=conversation.model.model_dump() if conversation.model else None,
        extra=dict(conversation.extra),
        status=conversation.status.value,
        created_at=conversation.create_time,
        modified_at=conversation.modify_time,
    )


def conversation_from_do(record: ConversationDO) -> Conversation:
    return Conversation(
        id=record.id,
        type=record.type,
        name=record.name,
        model=ModelDescriptor.model_validate(record.model) if record.model else None,
        extra=record.extra or {},
        create_time=record.created_at,
        modify_time=record.modified_at,
    )


def message_to_do(message: Message) -> MessageDO:
    return MessageDO(
        id=message.id,
        conversation_id=message.conversation_id,
        msg_id=message.msg_id,
        type=message.type,
        position=message.position.value,
        content=message.content,
        status=message.status,
        created_at=message.created_at,
    )


def message_from_do(record: MessageDO) -> Message:
    return Message(
        id=record.id,
        conversation_id=record.conversation_id,
        msg_id=record.msg_id,
        type=record.type,
        position=record.position,
        content=record.content,
        status=record.status,
        created_at=record.created_at,
    )


class ConversationStore:
    """Single logical store over the structured and the legacy store."""

    def __init__(self, db: DatabaseConnection, legacy: LegacyRecordStore):
        self.db = db
        self.legacy = legacy
        self.conversations = ConversationRepository(db.conn)
        self.messages = MessageRepository(db.conn)
        self.logger = get_app_logger()
        self._migrations: Dict[str, asyncio.Task] = {}

    # === Conversations ===

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        """
        Get a conversation, preferring the structured store.

        Args:
            conversation_id: Conversation ID

        Returns:
            Conversation, or None when neither store holds it
        """
        record = self.conversations.get(conversation_id)
        if record:
            return conversation_from_do(record)

        conversation = await self.legacy.get_conversation(conversation_id)
        if conversation:
            self._schedule_migration(conversation)
        return conversation

    async def list(self) -> List[Conversation]:
        """List conversations of both stores; the structured copy wins on id clash."""
        found = {record.id: conversation_from_do(record) for record in self.conversations.list_all()}
        for conversation in await self.legacy.list_conversations():
            if conversation.id not in found:
                found[conversation.id] = conversation
                self._schedule_migration(conversation)
        return sorted(found.values(), key=lambda c: c.modify_time, reverse=True)

    async def list_by_workspace(self, workspace: str) -> List[Conversation]:
        return [c for c in await self.list() if c.workspace == workspace]

    async def create(self, conversation: Conversation) -> Conversation:
        """
        Persist a new conversation.

        Raises:
            PersistenceError: If the record cannot be written
        """
        if not self.conversations.create(conversation_to_do(conversation)):
            raise PersistenceError(f"Failed to create conversation {conversation.id}")
        return conversation

    async def update(self, conversation_id: str, updates: Dict[str, Any]) -> bool:
        """
        Update fields of a conversation.

        A record only present in the legacy store is migrated first.

        Args:
            conversation_id: Conversation ID
            updates: name, model (dict or None), extra (dict)

        Returns:
            True if updated, False if the conversation does not exist
        """
        if self.conversations.get(conversation_id) is None:
            legacy = await self.legacy.get_conversation(conversation_id)
            if legacy is None:
                return False
            await self._migrate(legacy)

        changes = dict(updates)
        if "extra" in changes:
            changes["workspace"] = (changes["extra"] or {}).get("workspace")
        changes["modified_at"] = datetime.utcnow()
        return self.conversations.update(conversation_id, changes)

    async def delete(self, conversation_id: str) -> bool:
        """
        Delete a conversation and, in cascade, its messages, from both stores.

        Returns:
            True if the conversation existed in either store
        """
        existed = self.conversations.get(conversation_id) is not None
        if existed:
            if not self.messages.delete_by_conversation(conversation_id):
                raise PersistenceError(f"Failed to delete messages of {conversation_id}")
            if not self.conversations.delete(conversation_id):
                raise PersistenceError(f"Failed to delete conversation {conversation_id}")
        legacy_deleted = await self.legacy.delete_conversation(conversation_id)
        return existed or legacy_deleted

    # === Messages ===

    async def add_or_update_message(self, message: Message) -> None:
        """
        Upsert a message by id.

        Raises:
            PersistenceError: If the message cannot be written
        """
        if not self.messages.upsert(message_to_do(message)):
            raise PersistenceError(f"Failed to store message {message.id}")

    async def get_messages(self, conversation_id: str, limit: int = 10000) -> List[Message]:
        """Get messages of a conversation (chronological order)."""
        if self.conversations.get(conversation_id) is None:
            legacy_messages = await self.legacy.get_messages(conversation_id, limit)
            if legacy_messages:
                return legacy_messages
        return [message_from_do(m) for m in self.messages.get_by_conversation(conversation_id, limit)]

    # === Migration ===

    def _schedule_migration(self, conversation: Conversation) -> None:
        """Start a background migration unless one is already running for the id."""
        if conversation.id in self._migrations:
            return
        task = asyncio.create_task(self._migrate(conversation))
        self._migrations[conversation.id] = task
        task.add_done_callback(lambda _: self._migrations.pop(conversation.id, None))

    async def _migrate(self, conversation: Conversation) -> None:
        """Copy a legacy conversation and its messages into the structured store."""
        try:
            if self.conversations.get(conversation.id) is None:
                if not self.conversations.create(conversation_to_do(conversation)):
                    return
            for message in await self.legacy.get_messages(conversation.id):
                self.messages.upsert(message_to_do(message))
            self.logger.info(f"Migrated legacy conversation {conversation.id} to the structured store")
        except Exception:
            self.logger.exception(f"Failed to migrate legacy conversation {conversation.id}")

    async def wait_for_migrations(self) -> None:
        """Wait for background migrations (shutdown, tests)."""
        pending = list(self._migrations.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
